"""Normalisation of raw provider output into canonical insight objects.

Providers answer either with free text (a short report) or with structured
JSON.  ``transform`` accepts both:

Structured
──────────
    {"insights": [{"title": ..., "summary": ..., "score": 0.8}, ...]}
    [{"heading": ..., "description": ...}, "plain sentence", ...]

Field names are matched loosely (``title|heading|name``,
``summary|description|text|body``, ``score|confidence|relevance``).
An explicit empty list is a legitimate empty result.

Free text
─────────
The text is split into sentence-like chunks; every chunk becomes one insight
whose score is a deterministic blend of its length and its position (earlier
and fuller sentences score higher).

Anything that yields no insight raises ``MalformedResponseError``; an empty
InsightSet is only ever returned for an explicit empty list.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

from insights.errors import MalformedResponseError
from insights.models import ChartSeries, Insight, InsightSet, Query

logger = logging.getLogger(__name__)

_TITLE_FIELDS = ("title", "heading", "name")
_SUMMARY_FIELDS = ("summary", "description", "text", "body")
_SCORE_FIELDS = ("score", "confidence", "relevance")
_LIST_FIELDS = ("insights", "items", "results")

#: Words kept in a title derived from a free-text chunk.
_TITLE_WORDS = 6
#: Chunk length (characters) at which the length component of the score saturates.
_FULL_LENGTH = 160
_LENGTH_WEIGHT = 0.6
_POSITION_WEIGHT = 0.4

_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_BULLET = re.compile(r"^\s*(?:[-*•]+|\d+[.)])\s+")


# ── Public API ─────────────────────────────────────────────────────────────────


def transform(
    raw: Any,
    query: Query,
    fetched_at: Optional[datetime] = None,
) -> InsightSet:
    """Convert a raw provider payload into an ``InsightSet``.

    Args:
        raw: Provider payload: ``str``, ``bytes``, a mapping or a list.
        query: The query the payload answers; stored as ``source_query``.
        fetched_at: Timestamp to stamp on the result. Defaults to now (UTC);
            pass it explicitly for reproducible output.

    Returns:
        An ``InsightSet`` with insights in provider order.

    Raises:
        MalformedResponseError: If no insight can be extracted.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedResponseError("payload is not valid UTF-8") from exc

    if isinstance(raw, str):
        structured = _parse_json(raw)
        insights = _from_structured(structured) if structured is not None else _from_text(raw)
    elif isinstance(raw, (Mapping, list, tuple)):
        insights = _from_structured(raw)
    else:
        raise MalformedResponseError(f"unsupported payload type {type(raw).__name__}")

    logger.debug("Transformed payload into %d insights for topic=%r", len(insights), query.topic)
    return InsightSet(
        insights=tuple(insights),
        source_query=query,
        fetched_at=fetched_at or datetime.now(timezone.utc),
    )


def derive_chart(insight_set: InsightSet) -> ChartSeries:
    """One bar per insight: title as label, score (0.0 when unscored) as value."""
    return ChartSeries(
        labels=tuple(insight.title for insight in insight_set.insights),
        values=tuple(
            insight.score if insight.score is not None else 0.0
            for insight in insight_set.insights
        ),
    )


def score_distribution(insight_set: InsightSet, bins: int = 5) -> ChartSeries:
    """Histogram of insight scores over *bins* equal-width buckets in [0, 1].

    Unscored insights are left out. A score of exactly 1.0 falls in the last
    bucket.
    """
    if bins < 1:
        raise ValueError("bins must be at least 1")

    width = 1.0 / bins
    counts = [0] * bins
    for insight in insight_set.insights:
        if insight.score is None:
            continue
        counts[min(int(insight.score * bins), bins - 1)] += 1

    labels = tuple(f"{i * width:.1f}-{(i + 1) * width:.1f}" for i in range(bins))
    return ChartSeries(labels=labels, values=tuple(float(c) for c in counts))


# ── Structured payloads ────────────────────────────────────────────────────────


def _parse_json(text: str) -> Optional[Any]:
    """Return the decoded JSON list/object in *text*, or ``None`` for prose."""
    stripped = text.strip()
    fenced = _FENCE.match(stripped)
    if fenced:
        stripped = fenced.group("body").strip()
    if not stripped or stripped[0] not in "[{":
        return None
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        # Prose that happens to start with a bracket.
        return None


def _from_structured(data: Any) -> list[Insight]:
    if isinstance(data, Mapping):
        items = next(
            (data[name] for name in _LIST_FIELDS if isinstance(data.get(name), list)),
            None,
        )
        if items is None:
            raise MalformedResponseError("JSON object has no insight list")
    elif isinstance(data, (list, tuple)):
        items = data
    else:
        raise MalformedResponseError(f"unexpected JSON value {type(data).__name__}")

    if not items:
        return []

    insights: list[Insight] = []
    total = len(items)
    for index, item in enumerate(items):
        if isinstance(item, str):
            cleaned = _clean_chunk(item)
            if cleaned:
                insights.append(_chunk_to_insight(cleaned, index, total))
        elif isinstance(item, Mapping):
            insight = _item_to_insight(item)
            if insight is not None:
                insights.append(insight)

    if not insights:
        raise MalformedResponseError("no usable insight items")
    return insights


def _item_to_insight(item: Mapping[str, Any]) -> Optional[Insight]:
    title = _first_text(item, _TITLE_FIELDS)
    summary = _first_text(item, _SUMMARY_FIELDS)
    if not title and not summary:
        return None
    return Insight(
        title=title or _title_from(summary),
        summary=summary or title,
        score=_first_score(item),
    )


def _first_text(item: Mapping[str, Any], fields: Sequence[str]) -> str:
    for name in fields:
        value = item.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _first_score(item: Mapping[str, Any]) -> Optional[float]:
    for name in _present_fields(item, _SCORE_FIELDS):
        value = item[name]
        if isinstance(value, bool):
            continue
        try:
            score = float(value)
        except OverflowError:
            return 1.0 if value > 0 else 0.0
        except (TypeError, ValueError):
            continue
        if score != score:  # NaN
            continue
        return min(max(score, 0.0), 1.0)
    return None


def _present_fields(item: Mapping[str, Any], fields: Sequence[str]) -> list[str]:
    return [name for name in fields if item.get(name) is not None]


# ── Free text ──────────────────────────────────────────────────────────────────


def _from_text(text: str) -> list[Insight]:
    chunks = split_sentences(text)
    if not chunks:
        raise MalformedResponseError("no text content")
    return [_chunk_to_insight(chunk, i, len(chunks)) for i, chunk in enumerate(chunks)]


def split_sentences(text: str) -> list[str]:
    """Split free text into cleaned sentence-like chunks, in order.

    Line breaks always end a chunk; within a line, chunks end at sentence
    punctuation followed by whitespace. Bullet and numbering markers are
    removed and empty chunks dropped.

    Examples:
        >>> split_sentences("Solar is cheap. Wind grows!\\n- Storage lags")
        ['Solar is cheap.', 'Wind grows!', 'Storage lags']
    """
    chunks: list[str] = []
    for line in text.splitlines():
        for piece in _SENTENCE_BREAK.split(line):
            cleaned = _clean_chunk(piece)
            if cleaned:
                chunks.append(cleaned)
    return chunks


def _clean_chunk(chunk: str) -> str:
    chunk = _BULLET.sub("", chunk.strip())
    return chunk.strip().strip("#").strip()


def _chunk_to_insight(chunk: str, index: int, total: int) -> Insight:
    return Insight(
        title=_title_from(chunk),
        summary=chunk,
        score=heuristic_score(chunk, index, total),
    )


def heuristic_score(chunk: str, index: int, total: int) -> float:
    """Score a free-text chunk from its length and position.

    Longer chunks (up to ``_FULL_LENGTH`` characters) and earlier chunks
    score higher. The result is rounded so it is stable across platforms.
    """
    length_part = min(len(chunk) / _FULL_LENGTH, 1.0)
    position_part = 1.0 - (index / total) if total > 0 else 1.0
    return round(_LENGTH_WEIGHT * length_part + _POSITION_WEIGHT * position_part, 4)


def _title_from(text: str) -> str:
    words = text.split()
    title = " ".join(words[:_TITLE_WORDS]).rstrip(".,;:!?")
    if len(words) > _TITLE_WORDS:
        title += "…"
    return title
