"""Tests for insights/models.py — query keys, value constraints, defaults."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from insights.models import ChartSeries, Insight, InsightSet, Layout, Preferences, Query, Theme


class TestQuery:
    def test_topic_is_trimmed(self):
        assert Query(topic="  solar power ").topic == "solar power"

    def test_blank_topic_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            Query(topic="   ")

    def test_equivalent_topics_share_cache_key(self):
        assert Query(topic="AI ").cache_key() == Query(topic="ai").cache_key()

    def test_option_order_does_not_matter(self):
        a = Query(topic="ai", options={"lens": "vc", "format": "json"})
        b = Query(topic="ai", options={"format": "json", "lens": "vc"})
        assert a.cache_key() == b.cache_key()

    def test_different_options_differ(self):
        a = Query(topic="ai", options={"lens": "vc"})
        b = Query(topic="ai", options={"lens": "startup"})
        assert a.cache_key() != b.cache_key()

    def test_different_topics_differ(self):
        assert Query(topic="solar").cache_key() != Query(topic="wind").cache_key()

    def test_query_is_immutable(self):
        q = Query(topic="ai")
        with pytest.raises(ValidationError):
            q.topic = "other"


class TestInsight:
    def test_score_optional(self):
        assert Insight(title="t", summary="s").score is None

    @pytest.mark.parametrize("score", [-0.1, 1.01])
    def test_score_out_of_range_rejected(self, score):
        with pytest.raises(ValidationError):
            Insight(title="t", summary="s", score=score)


class TestInsightSet:
    def test_empty_set(self):
        result = InsightSet(
            insights=(),
            source_query=Query(topic="ai"),
            fetched_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )
        assert result.is_empty
        assert result.insights == ()


class TestChartSeries:
    def test_mismatched_lengths_rejected(self):
        with pytest.raises(ValidationError, match="differ in length"):
            ChartSeries(labels=("a", "b"), values=(1.0,))

    def test_empty_series_allowed(self):
        series = ChartSeries()
        assert series.labels == ()
        assert series.values == ()


class TestPreferences:
    def test_defaults(self):
        prefs = Preferences()
        assert prefs.theme is Theme.LIGHT
        assert prefs.layout is Layout.GRID

    def test_accepts_string_values(self):
        prefs = Preferences.model_validate({"theme": "dark", "layout": "list"})
        assert prefs == Preferences(theme=Theme.DARK, layout=Layout.LIST)

    def test_unknown_theme_rejected(self):
        with pytest.raises(ValidationError):
            Preferences.model_validate({"theme": "purple"})
