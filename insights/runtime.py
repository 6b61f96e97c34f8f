"""
Wiring helpers: build the core from ``Settings`` and host it on one loop.

A WSGI server handles requests on many threads, but the orchestrator must
only ever run on a single event loop.  ``LoopRunner`` owns that loop in a
daemon thread; request threads hand it coroutines with ``submit`` and block
on the returned ``concurrent.futures.Future``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, Optional, TypeVar

from insights.cache import ResponseCache
from insights.orchestrator import RequestOrchestrator, RetryPolicy
from insights.preferences import PreferenceStore
from insights.providers import ProviderAdapter, create_provider
from insights.storage import SqliteKeyValueStore

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoopRunner:
    """A private asyncio event loop running in a daemon thread."""

    def __init__(self, name: str = "insights-loop") -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
        logger.info("Event loop thread %s started", name)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule *coro* on the loop from any thread."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a plain callable on the loop thread and wait for its result."""

        async def _invoke() -> T:
            return func(*args)

        return self.submit(_invoke()).result()

    def stop(self) -> None:
        if self.loop.is_running():
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=5)
        if not self.loop.is_running():
            self.loop.close()


def build_orchestrator(
    settings: Settings,
    provider: Optional[ProviderAdapter] = None,
) -> RequestOrchestrator:
    """Assemble a ``RequestOrchestrator`` from configuration."""
    provider = provider or create_provider(settings)
    cache = ResponseCache(
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_ttl_seconds,
    )
    retry = RetryPolicy(
        max_attempts=settings.max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
        jitter=settings.retry_jitter,
    )
    logger.info(
        "Orchestrator provider=%s ttl=%ss max_entries=%d max_attempts=%d",
        provider.name, settings.cache_ttl_seconds, settings.cache_max_entries, settings.max_attempts,
    )
    return RequestOrchestrator(
        provider,
        cache=cache,
        retry=retry,
        cache_ttl=settings.cache_ttl_seconds,
        deadline=settings.query_deadline,
    )


def build_preference_store(settings: Settings) -> PreferenceStore:
    return PreferenceStore(SqliteKeyValueStore(settings.preferences_db_path))
