"""Display preferences persisted across sessions.

The persistence backend is treated as unreliable: it may be empty, hold
garbage, or fail outright.  ``load`` always degrades to defaults and
``save`` reports failure through its return value; neither raises.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional

from pydantic import ValidationError

from insights.models import Preferences
from insights.storage import KeyValueStore

logger = logging.getLogger(__name__)

#: Fixed key of the preference record in the backend.
PREFERENCES_KEY = "insights.preferences"

_STORAGE_ERRORS = (OSError, sqlite3.Error, ValueError)


class PreferenceStore:
    """Loads and saves ``Preferences`` through a key-value backend."""

    def __init__(self, backend: KeyValueStore, key: str = PREFERENCES_KEY) -> None:
        self.backend = backend
        self.key = key
        self._current: Optional[Preferences] = None

    @property
    def current(self) -> Preferences:
        """Last loaded or saved preferences (loads on first access)."""
        if self._current is None:
            self._current = self.load()
        return self._current

    def load(self) -> Preferences:
        """Read the persisted record, falling back to defaults on any problem."""
        try:
            raw = self.backend.read(self.key)
        except _STORAGE_ERRORS as exc:
            logger.warning("Preference read failed, using defaults: %s", exc)
            return self._remember(Preferences())

        if raw is None:
            return self._remember(Preferences())

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("preference record is not an object")
            prefs = Preferences.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.warning("Ignoring invalid preference record: %s", exc)
            prefs = Preferences()
        return self._remember(prefs)

    def save(self, preferences: Preferences) -> bool:
        """Persist *preferences* as a whole record.

        Returns:
            ``True`` if the backend accepted the write, ``False`` otherwise.
            On failure the previously persisted record stays in place.
        """
        record = json.dumps(preferences.model_dump(mode="json"), sort_keys=True)
        try:
            self.backend.write(self.key, record)
        except _STORAGE_ERRORS as exc:
            logger.warning("Preference write failed: %s", exc)
            return False
        self._remember(preferences)
        logger.info("Saved preferences theme=%s layout=%s", preferences.theme.value, preferences.layout.value)
        return True

    def update(self, **changes: Any) -> Optional[Preferences]:
        """Apply a partial change on top of ``current`` and save it.

        Returns:
            The saved preferences, or ``None`` if the backend rejected the
            write. ``current`` is unchanged in that case.

        Raises:
            pydantic.ValidationError: If a value is not a valid choice.
        """
        merged = {**self.current.model_dump(mode="json"), **changes}
        prefs = Preferences.model_validate(merged)
        if not self.save(prefs):
            return None
        return prefs

    def _remember(self, preferences: Preferences) -> Preferences:
        self._current = preferences
        return preferences
