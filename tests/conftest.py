"""Shared test doubles for the insights core."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from insights.models import Query
from insights.providers import ProviderAdapter


class ScriptedProvider(ProviderAdapter):
    """Returns (or raises) queued responses in order; repeats the last one."""

    name = "scripted"

    def __init__(self, *responses: Any, supports_cancellation: bool = True) -> None:
        self.responses = list(responses)
        self.supports_cancellation = supports_cancellation
        self.calls: list[Query] = []
        self.closed = False

    async def submit(self, query: Query) -> Any:
        self.calls.append(query)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


class GatedProvider(ProviderAdapter):
    """Blocks each call until the test opens the gate for its topic."""

    name = "gated"

    def __init__(self, supports_cancellation: bool = False) -> None:
        self.supports_cancellation = supports_cancellation
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.completed: list[str] = []

    def gate(self, topic: str) -> asyncio.Event:
        return self.gates.setdefault(topic, asyncio.Event())

    async def submit(self, query: Query) -> str:
        self.calls.append(query.topic)
        try:
            await self.gate(query.topic).wait()
        except asyncio.CancelledError:
            self.cancelled.append(query.topic)
            raise
        self.completed.append(query.topic)
        return f"{query.topic} is growing fast. {query.topic} costs keep falling."


async def settle(rounds: int = 5) -> None:
    """Let every ready task run until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


THREE_SENTENCES = (
    "Solar capacity doubled in the last five years. "
    "Offshore wind is expanding across Europe. "
    "Battery storage costs keep falling."
)


@pytest.fixture
def scripted():
    """Factory for ``ScriptedProvider`` instances."""
    return ScriptedProvider


@pytest.fixture
def gated():
    return GatedProvider


@pytest.fixture
def query() -> Query:
    return Query(topic="renewable energy")
