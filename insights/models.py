"""
Pydantic models shared across the insights core.

All models are frozen: an InsightSet or ChartSeries handed to the
presentation layer can be shared freely without defensive copies.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Query(BaseModel):
    """A user-entered topic plus provider parameters."""

    model_config = ConfigDict(frozen=True)

    topic: str
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("topic")
    @classmethod
    def _strip_topic(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Topic must not be empty.")
        return value

    def cache_key(self) -> str:
        """Return the canonical serialization used for cache-key equality.

        The topic is lowercased and the options are serialised with sorted
        keys, so ``Query(topic="AI ")`` and ``Query(topic="ai")`` collide.
        """
        return json.dumps(
            {"topic": self.topic.lower(), "options": self.options},
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )


class Insight(BaseModel):
    """A single insight card."""

    model_config = ConfigDict(frozen=True)

    title: str
    summary: str
    score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class InsightSet(BaseModel):
    """Ordered insights produced for one query."""

    model_config = ConfigDict(frozen=True)

    insights: tuple[Insight, ...]
    source_query: Query
    fetched_at: datetime

    @property
    def is_empty(self) -> bool:
        return not self.insights


class ChartSeries(BaseModel):
    """Chart-ready view of an InsightSet."""

    model_config = ConfigDict(frozen=True)

    labels: tuple[str, ...] = ()
    values: tuple[float, ...] = ()

    @model_validator(mode="after")
    def _same_length(self) -> "ChartSeries":
        if len(self.labels) != len(self.values):
            raise ValueError(
                f"labels ({len(self.labels)}) and values ({len(self.values)}) differ in length"
            )
        return self


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class Layout(str, Enum):
    GRID = "grid"
    LIST = "list"


class Preferences(BaseModel):
    """User display preferences, persisted as a flat record."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    theme: Theme = Theme.LIGHT
    layout: Layout = Layout.GRID
