"""Request orchestration: cache → provider → transformer → subscribers.

State machine
─────────────
    Idle ──search──▶ Loading ──▶ Success | Failure
                        ▲                  │
                        └──── search ──────┘

Every ``search()`` call takes the next sequence number.  Only the result of
the highest sequence number issued so far is ever published ("latest request
wins"), regardless of which provider call returns first.  Superseded provider
calls are cancelled when the adapter supports it; otherwise they run to
completion and their result is dropped.

All work runs on a single asyncio event loop.  State and cache are only
mutated between suspension points (the provider call and backoff sleeps), so
the sequence check is the only synchronisation needed.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from insights.cache import ResponseCache
from insights.errors import InsightError, ProviderError, RateLimited
from insights.models import Query
from insights.providers import ProviderAdapter
from insights.state import Failure, Idle, Loading, RequestState, Success
from insights.transformer import derive_chart, transform

logger = logging.getLogger(__name__)

Listener = Callable[[RequestState], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter.

    ``max_attempts`` counts provider calls, including the first one.
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.25

    def delay_for(self, attempt: int, error: InsightError, rng: random.Random) -> float:
        """Seconds to wait after the *attempt*-th call (1-based) failed with *error*."""
        if isinstance(error, RateLimited) and error.retry_after is not None:
            return error.retry_after
        backoff = min(self.max_delay, self.base_delay * 2 ** (attempt - 1))
        return backoff + rng.uniform(0, self.jitter)


class RequestOrchestrator:
    """Drives the fetch lifecycle and publishes ``RequestState`` snapshots.

    Args:
        provider: Backend adapter, chosen at construction time.
        cache: Response cache; a default-sized one is created if omitted.
        retry: Backoff policy.
        cache_ttl: TTL (seconds) for results written to the cache.
        deadline: Overall time budget (seconds) per query across retries;
            ``None`` disables it.
        clock: Wall-clock source in seconds, shared with the default cache.
        sleep: Awaitable sleep, injectable for tests.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        cache: Optional[ResponseCache] = None,
        retry: Optional[RetryPolicy] = None,
        cache_ttl: float = 300.0,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else ResponseCache(default_ttl=cache_ttl, clock=clock)
        self.retry = retry or RetryPolicy()
        self.cache_ttl = cache_ttl
        self.deadline = deadline
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._state: RequestState = Idle()
        self._listeners: list[Listener] = []
        self._sequence = 0
        self._inflight: Optional[asyncio.Future] = None

    # ── Subscription ───────────────────────────────────────────────────────

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def sequence(self) -> int:
        """Highest sequence number issued so far."""
        return self._sequence

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, state: RequestState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed on %s", listener, state.status)

    def _is_current(self, sequence: int) -> bool:
        return sequence == self._sequence

    # ── Search ─────────────────────────────────────────────────────────────

    async def search(self, query: Query, *, force: bool = False) -> RequestState:
        """Run the lifecycle for *query*.

        Args:
            query: The query to resolve.
            force: Skip the cache lookup and always contact the provider.

        Returns:
            The state this call published, or the orchestrator's current
            state if the call was superseded before it could publish.
        """
        self._sequence += 1
        sequence = self._sequence
        self._cancel_inflight()

        key = query.cache_key()
        if not force:
            entry = self.cache.get(key)
            if entry is not None:
                logger.info("Cache hit topic=%r seq=%d", query.topic, sequence)
                self._transition(Success(
                    query=query,
                    result=entry.value,
                    chart=derive_chart(entry.value),
                    from_cache=True,
                ))
                return self._state

        logger.info("Search topic=%r seq=%d", query.topic, sequence)
        self._transition(Loading(query=query, sequence=sequence))
        return await self._fetch(query, key, sequence)

    async def _fetch(self, query: Query, key: str, sequence: int) -> RequestState:
        started = self._clock()
        attempt = 0

        while True:
            attempt += 1
            try:
                raw = await self._call_provider(query)
                if not self._is_current(sequence):
                    return self._discard(query, sequence)
                result = transform(
                    raw,
                    query,
                    fetched_at=datetime.fromtimestamp(self._clock(), timezone.utc),
                )
            except asyncio.CancelledError:
                if not self._is_current(sequence):
                    return self._discard(query, sequence)
                raise
            except InsightError as exc:
                error = exc
            except Exception as exc:
                logger.exception("Unexpected provider failure topic=%r", query.topic)
                error = ProviderError(0, repr(exc))
            else:
                self.cache.put(key, result, ttl=self.cache_ttl)
                logger.info(
                    "Search succeeded topic=%r seq=%d insights=%d attempt=%d",
                    query.topic, sequence, len(result.insights), attempt,
                )
                self._transition(Success(query=query, result=result, chart=derive_chart(result)))
                return self._state

            if not self._is_current(sequence):
                return self._discard(query, sequence)

            if not error.retryable or attempt >= self.retry.max_attempts:
                return self._fail(query, error, attempt)

            delay = self.retry.delay_for(attempt, error, self._rng)
            if self.deadline is not None and self._clock() + delay - started > self.deadline:
                logger.warning("Query deadline reached topic=%r after %d attempts", query.topic, attempt)
                return self._fail(query, error, attempt)

            logger.warning(
                "Attempt %d/%d failed (%s) topic=%r, retrying in %.2fs",
                attempt, self.retry.max_attempts, error.kind, query.topic, delay,
            )
            await self._sleep(delay)
            if not self._is_current(sequence):
                return self._discard(query, sequence)

    async def _call_provider(self, query: Query) -> Any:
        call = asyncio.ensure_future(self.provider.submit(query))
        self._inflight = call
        try:
            return await call
        finally:
            if self._inflight is call:
                self._inflight = None

    def _cancel_inflight(self) -> None:
        if self._inflight is None or self._inflight.done():
            return
        if self.provider.supports_cancellation:
            logger.debug("Cancelling superseded provider call")
            self._inflight.cancel()
        self._inflight = None

    def _fail(self, query: Query, error: InsightError, attempt: int) -> RequestState:
        logger.warning(
            "Search failed topic=%r kind=%s attempt=%d: %s",
            query.topic, error.kind, attempt, error.message,
        )
        self._transition(Failure(query=query, error=error, attempt=attempt))
        return self._state

    def _discard(self, query: Query, sequence: int) -> RequestState:
        logger.debug("Discarding stale result topic=%r seq=%d (latest=%d)", query.topic, sequence, self._sequence)
        return self._state

    # ── Housekeeping ───────────────────────────────────────────────────────

    def invalidate(self, query: Query) -> bool:
        """Drop the cached result for *query*."""
        return self.cache.invalidate(query.cache_key())

    async def aclose(self) -> None:
        self._cancel_inflight()
        await self.provider.aclose()
