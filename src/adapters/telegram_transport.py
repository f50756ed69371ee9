"""Telethon implementation of the chat transport port.

FloodWait-style errors become QuotaExceededError so the poll loop can enter
its cooldown; every other Telegram or network failure becomes
TransportError.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

from telethon import errors
from telethon.tl.functions.messages import SendReactionRequest
from telethon.tl.types import ReactionEmoji

from adapters.telegram_mapper import build_chat_message
from core.errors import QuotaExceededError, TransportError
from core.models import ChatMessage
from core.ports import DirectMessageResult

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (errors.FloodWaitError, errors.SlowModeWaitError) as exc:
        raise QuotaExceededError(f"{action}: {exc}", retry_after=float(exc.seconds)) from exc
    except errors.RPCError as exc:
        raise TransportError(f"{action}: {exc}") from exc
    except (ConnectionError, OSError) as exc:
        raise TransportError(f"{action}: {exc}") from exc


class TelegramTransport:
    """Fetch, react, reply and DM through a connected TelegramClient."""

    def __init__(
        self,
        client,
        dm_cooldown_minutes: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._dm_cooldown = timedelta(minutes=dm_cooldown_minutes)
        self._clock = clock
        self._entities: dict[str, Any] = {}
        self._recent_dms: dict[tuple[str, str], datetime] = {}

    async def _entity(self, source_key: str) -> Any:
        if source_key in self._entities:
            return self._entities[source_key]
        if source_key.startswith("@"):
            target: Any = source_key
        else:
            target = int(source_key.split("chat_id:", 1)[1])
        with _translate_errors(f"resolve {source_key}"):
            entity = await self._client.get_entity(target)
        self._entities[source_key] = entity
        return entity

    async def fetch_messages(
        self, source_key: str, after_id: Optional[str], limit: int
    ) -> list[ChatMessage]:
        """Return up to ``limit`` messages after ``after_id``, or the newest page."""

        entity = await self._entity(source_key)
        with _translate_errors(f"fetch {source_key}"):
            if after_id is None:
                messages = await self._client.get_messages(entity, limit=limit)
            else:
                # reverse=True walks oldest-first from min_id so a long gap is
                # consumed in order instead of skipping to the newest page.
                messages = [
                    message
                    async for message in self._client.iter_messages(
                        entity, limit=limit, min_id=int(after_id), reverse=True
                    )
                ]
        return [build_chat_message(message, source_key) for message in messages if message is not None]

    async def fetch_one(self, source_key: str, message_id: str) -> Optional[ChatMessage]:
        entity = await self._entity(source_key)
        with _translate_errors(f"fetch {source_key}/{message_id}"):
            message = await self._client.get_messages(entity, ids=int(message_id))
        if message is None:
            return None
        return build_chat_message(message, source_key)

    async def post_reaction(self, source_key: str, message_id: str, emoji: str) -> None:
        entity = await self._entity(source_key)
        with _translate_errors(f"react {source_key}/{message_id}"):
            await self._client(
                SendReactionRequest(
                    peer=entity,
                    msg_id=int(message_id),
                    reaction=[ReactionEmoji(emoticon=emoji)],
                )
            )

    async def post_reply(self, source_key: str, text: str) -> None:
        entity = await self._entity(source_key)
        with _translate_errors(f"reply {source_key}"):
            await self._client.send_message(entity, text)

    async def send_direct_message(self, user_id: str, text: str) -> DirectMessageResult:
        """DM a user; identical texts inside the cooldown window are suppressed."""

        now = self._clock()
        key = (str(user_id), text)
        last_sent = self._recent_dms.get(key)
        if last_sent is not None and now - last_sent < self._dm_cooldown:
            return DirectMessageResult(ok=True, suppressed=True)

        try:
            with _translate_errors(f"dm {user_id}"):
                await self._client.send_message(int(user_id), text)
        except QuotaExceededError:
            raise
        except TransportError as exc:
            # Users with closed DMs are common; report instead of raising.
            LOGGER.info("Direct message to %s not delivered: %s", user_id, exc)
            return DirectMessageResult(ok=False)
        self._recent_dms[key] = now
        return DirectMessageResult(ok=True)
