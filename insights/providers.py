"""
Provider adapters: one async ``submit(query)`` contract over AI backends.

Implementations
───────────────
AnthropicProvider  remote inference through the ``anthropic`` SDK
OllamaProvider     local model endpoint (``/api/generate``) through ``httpx``

Adapters return the raw payload (text) untouched; normalisation happens in
``insights.transformer``.  SDK and transport exceptions are translated into
the canonical taxonomy in ``insights.errors`` and never leak past this
module.  SDK-level retries are disabled: the orchestrator owns retrying.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

import anthropic
import httpx

from insights.errors import NetworkError, ProviderError, RateLimited, parse_retry_after
from insights.models import Query

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)


# ── Prompts ────────────────────────────────────────────────────────────────────

#: System prompts keyed by the ``lens`` query option.
LENS_SYSTEMS: dict[str, str] = {
    "general": (
        "You are a research assistant. Write a concise briefing on the topic: "
        "overview, the most important points, current trends, known gaps. "
        "One sentence per point. Be factual."
    ),
    "scientific": (
        "You are a scientific research assistant. Summarise the state of research "
        "on the topic: key findings with evidence quality, research trends, "
        "methodological limitations. One sentence per finding."
    ),
    "startup": (
        "You are a startup analyst. Summarise the topic for founders: market "
        "summary, key opportunities, startup trends, risks and challenges. "
        "One sentence per point."
    ),
    "vc": (
        "You are a venture capital analyst. Summarise the topic for investors: "
        "market overview, investment highlights, market trends, due-diligence "
        "risks. Use data (TAM, CAGR, notable rounds) where known. One sentence per point."
    ),
}

#: Appended to the system prompt when ``options["format"] == "json"``.
JSON_INSTRUCTION = (
    'Return only JSON of the form {"insights": [{"title": str, "summary": str, '
    '"score": number between 0 and 1}]}, no commentary, no markdown fences.'
)


def build_system_prompt(options: dict[str, Any]) -> str:
    """Pick the lens system prompt and append the JSON instruction if asked."""
    system = LENS_SYSTEMS.get(str(options.get("lens", "general")), LENS_SYSTEMS["general"])
    if options.get("format") == "json":
        system = f"{system} {JSON_INSTRUCTION}"
    return system


def build_user_prompt(query: Query) -> str:
    return f"Topic: {query.topic}"


def numeric_option(options: dict[str, Any], name: str, cast: type, default: Any = None) -> Any:
    """Coerce a numeric query option, rejecting unusable values as a 400."""
    if name not in options:
        return default
    try:
        return cast(options[name])
    except (TypeError, ValueError, OverflowError) as exc:
        raise ProviderError(400, f"Invalid {name} option: {options[name]!r}") from exc


# ── Contract ───────────────────────────────────────────────────────────────────


class ProviderAdapter(ABC):
    """Uniform contract over generative backends.

    ``submit`` may raise only ``NetworkError``, ``RateLimited`` or
    ``ProviderError``.
    """

    #: Whether cancelling the awaiting task aborts the underlying call.
    supports_cancellation: bool = True

    name: str = "provider"

    @abstractmethod
    async def submit(self, query: Query) -> Any:
        """Send *query* to the backend and return its raw payload."""

    async def aclose(self) -> None:
        """Release network resources. Safe to call more than once."""


# ── Anthropic ──────────────────────────────────────────────────────────────────


class AnthropicProvider(ProviderAdapter):
    """Claude via the Messages API.

    The SDK client is lazy-initialised so the adapter can be built in tests
    without a live API key.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-haiku-4-5",
        max_tokens: int = 800,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: Optional[anthropic.AsyncAnthropic] = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        """Lazy-initialise and return the async Anthropic SDK client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                max_retries=0,
                timeout=self.timeout,
            )
        return self._client

    async def submit(self, query: Query) -> str:
        options = query.options
        params: dict[str, Any] = {
            "model": options.get("model", self.model),
            "max_tokens": numeric_option(options, "max_tokens", int, self.max_tokens),
            "system": build_system_prompt(options),
            "messages": [{"role": "user", "content": build_user_prompt(query)}],
        }
        if "temperature" in options:
            params["temperature"] = numeric_option(options, "temperature", float)

        logger.info("Anthropic request topic=%r model=%s", query.topic, params["model"])
        try:
            response = await self.client.messages.create(**params)
        except anthropic.APIConnectionError as exc:
            # Also covers APITimeoutError.
            raise NetworkError(str(exc)) from exc
        except anthropic.RateLimitError as exc:
            raise RateLimited(parse_retry_after(exc.response.headers.get("retry-after"))) from exc
        except anthropic.APIStatusError as exc:
            raise ProviderError(exc.status_code, exc.response.text) from exc

        return "".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", None) == "text"
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# ── Ollama ─────────────────────────────────────────────────────────────────────


class OllamaProvider(ProviderAdapter):
    """Local model served by Ollama (no API key)."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def submit(self, query: Query) -> str:
        options = query.options
        payload: dict[str, Any] = {
            "model": options.get("model", self.model),
            "system": build_system_prompt(options),
            "prompt": build_user_prompt(query),
            "stream": False,
        }
        if options.get("format") == "json":
            payload["format"] = "json"
        if "temperature" in options:
            payload["options"] = {"temperature": numeric_option(options, "temperature", float)}

        logger.info("Ollama request topic=%r model=%s", query.topic, payload["model"])
        try:
            response = await self.client.post(f"{self.base_url}/api/generate", json=payload)
        except httpx.TransportError as exc:
            # Connect errors and timeouts.
            raise NetworkError(str(exc) or exc.__class__.__name__) from exc

        if response.status_code == 429:
            raise RateLimited(parse_retry_after(response.headers.get("retry-after")))
        if response.is_error:
            raise ProviderError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, response.text) from exc
        if not isinstance(data, dict) or not isinstance(data.get("response"), str):
            raise ProviderError(response.status_code, response.text)
        return data["response"]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ── Factory ────────────────────────────────────────────────────────────────────


def create_provider(settings: Settings) -> ProviderAdapter:
    """Build the adapter named by ``settings.provider``."""
    provider = settings.provider.lower()
    if provider == "anthropic":
        return AnthropicProvider(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout=settings.provider_timeout,
        )
    if provider == "ollama":
        return OllamaProvider(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.provider_timeout,
        )
    raise ValueError(f"Unknown provider type: {settings.provider}")
