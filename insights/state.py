"""Request lifecycle snapshots published by the orchestrator.

Each state is an immutable dataclass; listeners always receive a complete
snapshot, never a delta.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from insights.errors import InsightError
from insights.models import ChartSeries, InsightSet, Query


@dataclass(frozen=True)
class Idle:
    status: str = "idle"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status}


@dataclass(frozen=True)
class Loading:
    query: Query
    sequence: int
    status: str = "loading"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "query": self.query.model_dump(mode="json"),
            "sequence": self.sequence,
        }


@dataclass(frozen=True)
class Success:
    query: Query
    result: InsightSet
    chart: ChartSeries
    from_cache: bool = False
    status: str = "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "query": self.query.model_dump(mode="json"),
            "result": self.result.model_dump(mode="json"),
            "chart": self.chart.model_dump(mode="json"),
            "from_cache": self.from_cache,
        }


@dataclass(frozen=True)
class Failure:
    query: Query
    error: InsightError
    attempt: int
    status: str = "failure"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "query": self.query.model_dump(mode="json"),
            "error": self.error.to_dict(),
            "attempt": self.attempt,
        }


RequestState = Union[Idle, Loading, Success, Failure]
