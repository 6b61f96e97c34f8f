"""Tests for web/app.py — the Flask JSON/SSE surface over the core."""

from __future__ import annotations

import json

import pytest

from config.settings import Settings
from insights.errors import ProviderError
from insights.orchestrator import RequestOrchestrator, RetryPolicy
from insights.preferences import PreferenceStore
from insights.runtime import LoopRunner
from insights.storage import MemoryKeyValueStore
import web.app as web_app
from web.app import create_app

from tests.conftest import THREE_SENTENCES, GatedProvider, ScriptedProvider


@pytest.fixture
def runner():
    runner = LoopRunner()
    yield runner
    runner.stop()


class UnwritableStore(MemoryKeyValueStore):
    def write(self, key, value):
        raise OSError("read-only filesystem")


def make_client(runner, *responses, provider=None, backend=None):
    provider = provider or ScriptedProvider(*responses)
    orchestrator = RequestOrchestrator(provider, retry=RetryPolicy(max_attempts=1))
    app = create_app(
        settings=Settings(),
        orchestrator=orchestrator,
        preferences=PreferenceStore(backend if backend is not None else MemoryKeyValueStore()),
        runner=runner,
    )
    app.config["TESTING"] = True
    return app.test_client(), provider


def sse_events(body: str) -> list:
    events = []
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


class TestSearchEndpoint:
    def test_success(self, runner):
        client, provider = make_client(runner, THREE_SENTENCES)

        resp = client.get("/api/search?topic=renewable%20energy&lens=vc")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "success"
        assert len(body["result"]["insights"]) == 3
        assert len(body["chart"]["labels"]) == 3
        assert provider.calls[0].options == {"lens": "vc"}

    def test_blank_topic(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.get("/api/search?topic=%20").status_code == 400

    def test_failure(self, runner):
        client, _ = make_client(runner, ProviderError(400, "bad"))

        resp = client.get("/api/search?topic=ai")

        assert resp.status_code == 502
        body = resp.get_json()
        assert body["status"] == "failure"
        assert body["error"]["kind"] == "provider"
        assert body["attempt"] == 1

    def test_second_search_hits_cache(self, runner):
        client, provider = make_client(runner, THREE_SENTENCES)
        client.get("/api/search?topic=ai")
        body = client.get("/api/search?topic=AI").get_json()

        assert body["from_cache"] is True
        assert len(provider.calls) == 1

    def test_force_refresh(self, runner):
        client, provider = make_client(runner, THREE_SENTENCES)
        client.get("/api/search?topic=ai")
        client.get("/api/search?topic=ai&force=1")
        assert len(provider.calls) == 2

    def test_unusable_numeric_option(self, runner):
        client, provider = make_client(runner, THREE_SENTENCES)

        resp = client.get("/api/search?topic=ai&max_tokens=lots")

        assert resp.status_code == 400
        assert "max_tokens" in resp.get_json()["error"]
        assert provider.calls == []

    def test_timeout(self, runner, monkeypatch):
        monkeypatch.setattr(web_app, "SEARCH_TIMEOUT", 0.05)
        client, _ = make_client(runner, provider=GatedProvider())

        resp = client.get("/api/search?topic=ai")

        assert resp.status_code == 504
        assert resp.get_json() == {"error": "timed out"}

    def test_state(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.get("/api/state").get_json() == {"status": "idle"}
        client.get("/api/search?topic=ai")
        assert client.get("/api/state").get_json()["status"] == "success"


class TestStreamEndpoint:
    def test_streams_transitions(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)

        resp = client.get("/api/stream?topic=renewable%20energy")

        assert resp.mimetype == "text/event-stream"
        events = sse_events(resp.get_data(as_text=True))
        assert [e["status"] for e in events[:-1]] == ["loading", "success"]
        assert events[-1] == "[DONE]"

    def test_blank_topic(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.get("/api/stream").status_code == 400


class TestPreferencesEndpoint:
    def test_defaults(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.get("/api/preferences").get_json() == {"theme": "light", "layout": "grid"}

    def test_partial_update(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)

        resp = client.put("/api/preferences", json={"theme": "dark"})

        assert resp.status_code == 200
        assert resp.get_json() == {"theme": "dark", "layout": "grid"}
        assert client.get("/api/preferences").get_json()["theme"] == "dark"

    def test_failed_save_reported(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES, backend=UnwritableStore())

        resp = client.put("/api/preferences", json={"theme": "dark"})

        assert resp.status_code == 503
        assert client.get("/api/preferences").get_json()["theme"] == "light"

    def test_invalid_value(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        resp = client.put("/api/preferences", json={"layout": "masonry"})
        assert resp.status_code == 400

    def test_non_object_body(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.put("/api/preferences", json=["dark"]).status_code == 400


class TestCacheEndpoints:
    def test_stats_and_clear(self, runner):
        client, provider = make_client(runner, THREE_SENTENCES)
        client.get("/api/search?topic=ai")
        client.get("/api/search?topic=ai")

        stats = client.get("/api/cache/stats").get_json()
        assert stats["hits"] == 1
        assert stats["size"] == 1

        assert client.delete("/api/cache").get_json() == {"cleared": True}
        client.get("/api/search?topic=ai")
        assert len(provider.calls) == 2


class TestDistributionEndpoint:
    def test_histogram_of_current_result(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        client.get("/api/search?topic=ai")

        body = client.get("/api/distribution?bins=10").get_json()

        assert len(body["labels"]) == 10
        assert sum(body["values"]) == 3.0

    def test_no_result_yet(self, runner):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.get("/api/distribution").status_code == 409

    @pytest.mark.parametrize("bins", ["0", "many"])
    def test_invalid_bins(self, runner, bins):
        client, _ = make_client(runner, THREE_SENTENCES)
        assert client.get(f"/api/distribution?bins={bins}").status_code == 400
