"""Cursor-driven polling loop.

One invocation runs FetchPrimary -> (every Nth run) FetchBackfill ->
merge & sort -> process batch -> persist cursor, then returns control to the
caller. There are no background tasks; the wall-clock budget and message cap
are the only places the loop stops early. Overlapping invocations are made
safe by the monotonic cursor and the idempotent reconciler, not by locks.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Optional

from core.config import PollConfig
from core.cursor import CursorStore
from core.errors import QuotaExceededError, TransportError
from core.models import ChatMessage, MessageOutcome, RunSummary, message_id_key
from core.ports import TransportPort
from core.processor import MessageProcessor

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def merge_messages(
    primary: Iterable[ChatMessage], extra: Iterable[ChatMessage]
) -> list[ChatMessage]:
    """Deduplicate by id (first occurrence wins) and sort oldest first."""

    merged: dict[int, ChatMessage] = {}
    for message in list(primary) + list(extra):
        merged.setdefault(message.sort_key, message)
    return [merged[key] for key in sorted(merged)]


class PollLoop:
    """Drive the message pipeline for one chat source."""

    def __init__(
        self,
        source_key: str,
        transport: TransportPort,
        cursors: CursorStore,
        processor: MessageProcessor,
        config: PollConfig,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.source_key = source_key
        self._transport = transport
        self._cursors = cursors
        self._processor = processor
        self._config = config
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._rng = rng or random.Random()

    # Entry points ------------------------------------------------------

    async def run_once(self) -> RunSummary:
        """Run one poll cycle against the persisted cursor."""

        started = self._monotonic()
        cursor = self._cursors.get(self.source_key)
        summary = RunSummary(source_key=self.source_key, cursor_before=cursor, cursor_after=cursor)
        if self._in_cooldown(summary):
            return summary

        invocation = self._cursors.next_invocation(self.source_key)
        try:
            primary = await self._fetch(cursor, self._config.page_size)
            backfill: list[ChatMessage] = []
            if self._config.backfill_every > 0 and invocation % self._config.backfill_every == 0:
                backfill = await self._fetch_backfill(primary)
        except QuotaExceededError as exc:
            self._enter_cooldown(summary, exc)
            return summary

        batch = merge_messages(primary, backfill)
        LOGGER.info(
            "Poll %s #%s: %s new, %s backfilled (cursor=%s)",
            self.source_key,
            invocation,
            len(primary),
            len(backfill),
            cursor,
        )

        furthest = await self._process_batch(batch, summary, started)

        if furthest is not None and self._cursors.advance(self.source_key, furthest):
            summary.cursor_after = self._cursors.get(self.source_key)
        return summary

    async def run_from(self, start_id: str, include_start: bool = True) -> RunSummary:
        """Replay forward from an explicit message id without touching the cursor.

        Pages are fetched until the source is exhausted or a budget is hit.
        Progress is strictly forward: any message at or before the last
        processed id is ignored.
        """

        started = self._monotonic()
        summary = RunSummary(source_key=self.source_key, cursor_before=str(start_id))
        if self._in_cooldown(summary):
            return summary

        last_done = message_id_key(start_id)
        try:
            batch: list[ChatMessage] = []
            if include_start:
                await self._jitter()
                first = await self._transport.fetch_one(self.source_key, str(start_id))
                if first is not None:
                    batch.append(first)
                    last_done -= 1

            after = str(message_id_key(start_id))
            while True:
                page = await self._fetch(after, self._config.page_size)
                batch = merge_messages(batch, page)
                batch = [message for message in batch if message.sort_key > last_done]
                if not batch:
                    break
                furthest = await self._process_batch(batch, summary, started)
                if furthest is None:
                    break
                last_done = message_id_key(furthest)
                summary.cursor_after = furthest
                if summary.stopped_early or summary.cooldown or len(page) < self._config.page_size:
                    break
                after = furthest
                batch = []
        except QuotaExceededError as exc:
            self._enter_cooldown(summary, exc)
        return summary

    # Fetching ----------------------------------------------------------

    async def _jitter(self) -> None:
        if self._config.jitter_seconds > 0:
            await self._sleep(self._rng.uniform(0, self._config.jitter_seconds))

    async def _fetch(self, after_id: Optional[str], limit: int) -> list[ChatMessage]:
        """Fetch one page; a non-quota failure is retried once with half the page."""

        await self._jitter()
        try:
            return await self._transport.fetch_messages(self.source_key, after_id, limit)
        except QuotaExceededError:
            raise
        except TransportError as exc:
            retry_limit = max(1, limit // 2)
            LOGGER.warning("Fetch failed for %s (%s); retrying with limit=%s", self.source_key, exc, retry_limit)
        await self._jitter()
        return await self._transport.fetch_messages(self.source_key, after_id, retry_limit)

    async def _fetch_backfill(self, primary: list[ChatMessage]) -> list[ChatMessage]:
        """Recent messages created or edited inside the trailing window."""

        recent = await self._fetch(None, self._config.page_size)
        cutoff = self._clock() - timedelta(minutes=self._config.backfill_window_minutes)
        known = {message.sort_key for message in primary}
        fresh = [
            message
            for message in recent
            if message.sort_key not in known and message.last_activity >= cutoff
        ]
        # Keep the most recently active ones when over the cap.
        fresh.sort(key=lambda message: message.last_activity, reverse=True)
        return fresh[: self._config.backfill_max]

    # Processing --------------------------------------------------------

    async def _process_batch(
        self, batch: list[ChatMessage], summary: RunSummary, started: float
    ) -> Optional[str]:
        """Process sorted messages and return the furthest id handled."""

        deadline = self._config.time_budget_seconds - self._config.safety_margin_seconds
        furthest: Optional[int] = None
        for message in batch:
            if summary.seen >= self._config.max_messages:
                summary.stopped_early = "message_cap"
                break
            if self._monotonic() - started > deadline:
                summary.stopped_early = "time_budget"
                break

            try:
                outcome = await self._processor.handle(message)
            except Exception:
                LOGGER.exception("Error while processing message %s", message.message_id)
                outcome = MessageOutcome("error")
            summary.record(outcome)
            furthest = message.sort_key if furthest is None else max(furthest, message.sort_key)

            quota = self._processor.quota_signal
            if quota is not None:
                self._processor.quota_signal = None
                self._enter_cooldown(summary, quota)
                break

        return str(furthest) if furthest is not None else None

    # Cooldown ----------------------------------------------------------

    def _in_cooldown(self, summary: RunSummary) -> bool:
        until = self._cursors.cooldown_until(self.source_key)
        if until is None:
            return False
        if self._clock() < until:
            LOGGER.info("%s cooling down until %s; skipping run", self.source_key, until.isoformat())
            summary.cooldown = True
            return True
        self._cursors.clear_cooldown(self.source_key)
        return False

    def _enter_cooldown(self, summary: RunSummary, exc: QuotaExceededError) -> None:
        seconds = exc.retry_after if exc.retry_after else self._config.cooldown_seconds
        until = self._clock() + timedelta(seconds=seconds)
        self._cursors.start_cooldown(self.source_key, until)
        summary.cooldown = True
        LOGGER.warning("Quota signal for %s; cooling down for %.0fs", self.source_key, seconds)
