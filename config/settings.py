"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError on missing keys or bad limits
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_float(name: str, default: str) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.environ.get(name, default))


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── Provider ────────────────────────────────────────────────────────────
    #: ``"anthropic"`` (remote) or ``"ollama"`` (local model endpoint).
    provider: str = field(
        default_factory=lambda: os.environ.get("INSIGHTS_PROVIDER", "anthropic")
    )
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )
    anthropic_model: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_MODEL", "claude-haiku-4-5")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_MODEL", "llama3")
    )
    provider_timeout: float = field(
        default_factory=lambda: _env_float("PROVIDER_TIMEOUT", "30")
    )

    # ── Cache ───────────────────────────────────────────────────────────────
    cache_ttl_seconds: float = field(
        default_factory=lambda: _env_float("CACHE_TTL_SECONDS", "300")
    )
    cache_max_entries: int = field(
        default_factory=lambda: _env_int("CACHE_MAX_ENTRIES", "128")
    )

    # ── Retry / backoff ─────────────────────────────────────────────────────
    max_attempts: int = field(
        default_factory=lambda: _env_int("MAX_ATTEMPTS", "3")
    )
    retry_base_delay: float = field(
        default_factory=lambda: _env_float("RETRY_BASE_DELAY", "0.5")
    )
    retry_max_delay: float = field(
        default_factory=lambda: _env_float("RETRY_MAX_DELAY", "8")
    )
    retry_jitter: float = field(
        default_factory=lambda: _env_float("RETRY_JITTER", "0.25")
    )
    #: Overall budget per query across retries; 0 disables it.
    query_deadline_seconds: float = field(
        default_factory=lambda: _env_float("QUERY_DEADLINE", "60")
    )

    # ── Preferences ─────────────────────────────────────────────────────────
    preferences_db_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get("PREFERENCES_DB_PATH", "data/preferences.db")
        )
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: _env_int("PORT", "5001")
    )

    @property
    def query_deadline(self) -> Optional[float]:
        return self.query_deadline_seconds or None

    def validate(self) -> None:
        """Raise ``ValueError`` if any required setting is missing or out of range."""
        if self.provider.lower() not in ("anthropic", "ollama"):
            raise ValueError(f"INSIGHTS_PROVIDER must be 'anthropic' or 'ollama', got {self.provider!r}.")
        if self.provider.lower() == "anthropic" and not self.anthropic_api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "Copy .env.example to .env and add your key."
            )
        if self.cache_max_entries < 1:
            raise ValueError("CACHE_MAX_ENTRIES must be at least 1.")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be positive.")
        if self.max_attempts < 1:
            raise ValueError("MAX_ATTEMPTS must be at least 1.")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0 or self.retry_jitter < 0:
            raise ValueError("Retry delays must not be negative.")
        if self.query_deadline_seconds < 0:
            raise ValueError("QUERY_DEADLINE must not be negative.")
