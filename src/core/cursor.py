"""Per-source cursor and loop state on top of a key-value StatePort."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from core.models import message_id_key
from core.ports import StatePort
from core.source_keys import cooldown_key, cursor_key, invocations_key, legacy_cursor_keys

LOGGER = logging.getLogger(__name__)


class CursorStore:
    """Monotonic watermark plus cooldown and invocation bookkeeping."""

    def __init__(self, state: StatePort) -> None:
        self._state = state

    def get(self, source_key: str) -> Optional[str]:
        """Return the persisted cursor, migrating a legacy key if needed."""

        value = self._state.get_state(cursor_key(source_key))
        if value is not None:
            return value

        for legacy_key in legacy_cursor_keys(source_key):
            legacy_value = self._state.get_state(legacy_key)
            if legacy_value is None:
                continue
            try:
                message_id_key(legacy_value)
            except ValueError:
                LOGGER.warning("Ignoring non-numeric legacy cursor %s=%r", legacy_key, legacy_value)
                continue
            self._state.set_state(cursor_key(source_key), legacy_value)
            self._state.delete_state(legacy_key)
            LOGGER.info("Migrated cursor for %s from legacy key %s", source_key, legacy_key)
            return legacy_value
        return None

    def advance(self, source_key: str, message_id: str) -> bool:
        """Persist message_id only if it is strictly past the stored cursor."""

        current = self.get(source_key)
        if current is not None and message_id_key(message_id) <= message_id_key(current):
            return False
        self._state.set_state(cursor_key(source_key), str(message_id_key(message_id)))
        return True

    def reset(self, source_key: str) -> None:
        self._state.delete_state(cursor_key(source_key))

    def cooldown_until(self, source_key: str) -> Optional[datetime]:
        raw = self._state.get_state(cooldown_key(source_key))
        if not raw:
            return None
        return datetime.fromisoformat(raw)

    def start_cooldown(self, source_key: str, until: datetime) -> None:
        self._state.set_state(cooldown_key(source_key), until.astimezone(timezone.utc).isoformat())

    def clear_cooldown(self, source_key: str) -> None:
        self._state.delete_state(cooldown_key(source_key))

    def next_invocation(self, source_key: str) -> int:
        """Increment and return the 1-based invocation counter."""

        raw = self._state.get_state(invocations_key(source_key))
        count = int(raw) + 1 if raw else 1
        self._state.set_state(invocations_key(source_key), str(count))
        return count
