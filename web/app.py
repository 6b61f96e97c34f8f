"""
Flask web server exposing the insights core to a presentation layer.

Routes
──────
GET    /api/search?topic=...     Run a search, return the resulting state (JSON)
GET    /api/stream?topic=...     SSE: every state transition of a search
GET    /api/state                Current request state (JSON)
GET    /api/distribution?bins=5  Score histogram of the current result (JSON)
GET    /api/preferences          Current display preferences (JSON)
PUT    /api/preferences          Partial update of display preferences (JSON)
GET    /api/cache/stats          Cache hit/miss counters (JSON)
DELETE /api/cache                Drop every cached result

Any query parameter other than ``topic`` and ``force`` is passed to the
provider as a query option (``lens``, ``format``, ``model``, …).
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import os
import queue
import sys
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context
from pydantic import ValidationError

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.settings import Settings
from insights.errors import ProviderError
from insights.models import Query
from insights.orchestrator import RequestOrchestrator
from insights.preferences import PreferenceStore
from insights.providers import numeric_option
from insights.runtime import LoopRunner, build_orchestrator, build_preference_store
from insights.state import Failure, Success
from insights.transformer import score_distribution

logger = logging.getLogger(__name__)

#: Seconds a blocking /api/search waits for the orchestrator.
SEARCH_TIMEOUT = 120.0

_RESERVED_PARAMS = frozenset(["topic", "force"])
_NUMERIC_OPTIONS = {"max_tokens": int, "temperature": float}
_DONE = object()


def _query_from_request() -> Query:
    options = {
        name: value
        for name, value in request.args.items()
        if name not in _RESERVED_PARAMS
    }
    for name, cast in _NUMERIC_OPTIONS.items():
        numeric_option(options, name, cast)
    return Query(topic=request.args.get("topic", ""), options=options)


def _sse(payload: object) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[RequestOrchestrator] = None,
    preferences: Optional[PreferenceStore] = None,
    runner: Optional[LoopRunner] = None,
) -> Flask:
    """Build the Flask app around one orchestrator hosted on one event loop."""
    settings = settings or Settings()
    orchestrator = orchestrator or build_orchestrator(settings)
    preferences = preferences or build_preference_store(settings)
    runner = runner or LoopRunner()
    preferences.load()

    app = Flask(__name__)
    app.extensions["insights"] = {
        "orchestrator": orchestrator,
        "preferences": preferences,
        "runner": runner,
    }

    # ── Search ─────────────────────────────────────────────────────────────

    @app.route("/api/search")
    def search():
        """Run a search to completion and return the published state."""
        try:
            query = _query_from_request()
        except ValidationError:
            return jsonify({"error": "topic query param is required"}), 400
        except ProviderError as exc:
            return jsonify({"error": exc.body}), 400

        force = request.args.get("force", "0") == "1"
        try:
            state = runner.submit(orchestrator.search(query, force=force)).result(timeout=SEARCH_TIMEOUT)
        except concurrent.futures.TimeoutError:
            logger.error("Search timed out for topic=%r", query.topic)
            return jsonify({"error": "timed out"}), 504
        status = 502 if isinstance(state, Failure) else 200
        return jsonify(state.to_dict()), status

    @app.route("/api/stream")
    def stream_endpoint():
        """SSE endpoint streaming every state transition of a search.

        SSE events emitted:
          {"status": "loading", ...}        provider call in flight
          {"status": "success", ...}        InsightSet + ChartSeries
          {"status": "failure", ...}        error kind + attempt count
          {"status": "error", "message": …} unexpected server-side failure
          [DONE]
        """
        try:
            query = _query_from_request()
        except ValidationError:
            return jsonify({"error": "topic query param is required"}), 400
        except ProviderError as exc:
            return jsonify({"error": exc.body}), 400
        force = request.args.get("force", "0") == "1"

        events: queue.Queue = queue.Queue()
        unsubscribe = runner.call(orchestrator.subscribe, events.put)
        future = runner.submit(orchestrator.search(query, force=force))
        future.add_done_callback(lambda _: events.put(_DONE))

        def generate():
            try:
                while True:
                    item = events.get(timeout=SEARCH_TIMEOUT)
                    if item is _DONE:
                        break
                    yield _sse(item.to_dict())

                if future.cancelled():
                    yield _sse({"status": "error", "message": "search cancelled"})
                elif future.exception() is not None:
                    logger.error("Search stream error for topic=%r: %s", query.topic, future.exception())
                    yield _sse({"status": "error", "message": str(future.exception())})
            except queue.Empty:
                logger.error("Search stream timed out for topic=%r", query.topic)
                yield _sse({"status": "error", "message": "timed out"})
            finally:
                runner.call(unsubscribe)

            yield "data: [DONE]\n\n"

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.route("/api/state")
    def current_state():
        return jsonify(runner.call(lambda: orchestrator.state).to_dict())

    @app.route("/api/distribution")
    def distribution():
        """Histogram of scores in the current result, e.g. ``?bins=10``."""
        try:
            bins = int(request.args.get("bins", "5"))
        except ValueError:
            return jsonify({"error": "bins must be an integer"}), 400
        if bins < 1:
            return jsonify({"error": "bins must be at least 1"}), 400

        state = runner.call(lambda: orchestrator.state)
        if not isinstance(state, Success):
            return jsonify({"error": "no result available"}), 409
        return jsonify(score_distribution(state.result, bins=bins).model_dump(mode="json"))

    # ── Preferences ────────────────────────────────────────────────────────

    @app.route("/api/preferences")
    def get_preferences():
        return jsonify(preferences.current.model_dump(mode="json"))

    @app.route("/api/preferences", methods=["PUT"])
    def put_preferences():
        """Apply a partial preference update, e.g. ``{"theme": "dark"}``."""
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({"error": "JSON object body is required"}), 400
        try:
            prefs = preferences.update(**body)
        except ValidationError as exc:
            return jsonify({"error": "invalid preferences", "details": exc.errors(include_url=False)}), 400
        if prefs is None:
            return jsonify({"error": "preferences could not be saved"}), 503
        return jsonify(prefs.model_dump(mode="json"))

    # ── Cache ──────────────────────────────────────────────────────────────

    @app.route("/api/cache/stats")
    def cache_stats():
        return jsonify(runner.call(lambda: orchestrator.cache.stats.to_dict()))

    @app.route("/api/cache", methods=["DELETE"])
    def clear_cache():
        runner.call(orchestrator.cache.clear)
        return jsonify({"cleared": True})

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    settings = Settings()
    settings.validate()
    create_app(settings).run(debug=settings.debug, host="0.0.0.0", port=settings.port)
