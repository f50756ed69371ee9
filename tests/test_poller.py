from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import (
    NOW,
    SOURCE,
    FakeSleep,
    FakeTransport,
    build_loop,
    fixed_clock,
    make_message,
)
from core.config import PollConfig
from core.cursor import CursorStore
from core.errors import QuotaExceededError, TransportError
from core.models import MessageOutcome
from core.poller import PollLoop, merge_messages

LINE = "[Gold]: dod_lennon2 Wickeds 3 > Avengers 1"
OTHER_LINE = "dod_lennon2 Ravens 1 - 0 Wolves"


def _run(loop):
    return asyncio.run(loop.run_once())


def test_merge_deduplicates_and_sorts_numerically() -> None:
    first = make_message("100", "first")
    duplicate = make_message("100", "second")
    small = make_message("99", "small")

    merged = merge_messages([first], [duplicate, small])

    assert [message.message_id for message in merged] == ["99", "100"]
    assert merged[1].text == "first"


def test_first_run_processes_newest_page_and_sets_cursor(storage) -> None:
    transport = FakeTransport([make_message("100", LINE), make_message("101", "good game everyone")])

    summary = _run(build_loop(storage, transport))

    assert (summary.seen, summary.parsed, summary.applied, summary.new) == (2, 1, 1, 1)
    assert summary.skipped == {"parse_unknown_map": 1}
    assert summary.cursor_before is None
    assert summary.cursor_after == "101"
    assert CursorStore(storage).get(SOURCE) == "101"


def test_second_run_with_nothing_new_keeps_cursor(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    loop = build_loop(storage, transport)
    _run(loop)

    summary = _run(loop)

    assert summary.seen == 0
    assert summary.cursor_after == "100"
    assert transport.fetch_calls[-1] == ("100", 10)


def test_cursor_compares_ids_as_integers(storage) -> None:
    CursorStore(storage).advance(SOURCE, "99")
    transport = FakeTransport([make_message("99", "old"), make_message("100", LINE)])

    summary = _run(build_loop(storage, transport))

    assert summary.seen == 1
    assert summary.cursor_after == "100"


def test_backfill_picks_up_edits_behind_the_cursor(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    loop = build_loop(storage, transport, config=PollConfig(page_size=10, backfill_every=1, jitter_seconds=0))
    _run(loop)

    transport.put(
        make_message("100", "[Gold]: dod_lennon2 Wickeds 2 > Avengers 1", edited_at=NOW - timedelta(minutes=1))
    )
    summary = _run(loop)

    assert summary.edits == 1
    assert storage.get_slot("Gold", 20).score1 == 2
    assert summary.cursor_after == "100"


def test_backfill_skips_unchanged_messages(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    loop = build_loop(storage, transport, config=PollConfig(page_size=10, backfill_every=1, jitter_seconds=0))
    _run(loop)

    summary = _run(loop)

    assert summary.skipped == {"skip_same_hash": 1}
    assert len(storage.writes) == 1


def test_backfill_ignores_messages_outside_the_window(storage) -> None:
    CursorStore(storage).advance(SOURCE, "100")
    transport = FakeTransport([make_message("100", LINE, created_at=NOW - timedelta(hours=5))])
    loop = build_loop(storage, transport, config=PollConfig(page_size=10, backfill_every=1, jitter_seconds=0))

    summary = _run(loop)

    assert summary.seen == 0
    assert storage.writes == []


def test_backfill_runs_every_nth_invocation(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    loop = build_loop(storage, transport, config=PollConfig(page_size=10, backfill_every=2, jitter_seconds=0))

    _run(loop)
    assert len(transport.fetch_calls) == 1
    _run(loop)
    assert len(transport.fetch_calls) == 3
    assert transport.fetch_calls[-1] == (None, 10)


def test_message_cap_stops_early_and_resumes(storage) -> None:
    transport = FakeTransport([make_message(str(i), "chatter") for i in (100, 101, 102)])
    loop = build_loop(storage, transport, config=PollConfig(page_size=10, backfill_every=0, jitter_seconds=0, max_messages=2))

    summary = _run(loop)
    assert (summary.seen, summary.stopped_early, summary.cursor_after) == (2, "message_cap", "101")

    summary = _run(loop)
    assert (summary.seen, summary.stopped_early, summary.cursor_after) == (1, None, "102")


def test_time_budget_stops_early(storage) -> None:
    ticks = iter([0.0, 0.0, 500.0])
    transport = FakeTransport([make_message("100", LINE), make_message("101", OTHER_LINE)])
    loop = build_loop(storage, transport, monotonic=lambda: next(ticks))

    summary = _run(loop)

    assert summary.seen == 1
    assert summary.stopped_early == "time_budget"
    assert summary.cursor_after == "100"


def test_quota_on_fetch_enters_cooldown(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    transport.fetch_errors = [QuotaExceededError("flood wait", retry_after=60)]
    _run(build_loop(storage, transport))

    assert CursorStore(storage).cooldown_until(SOURCE) == NOW + timedelta(seconds=60)
    assert len(transport.fetch_calls) == 1

    summary = _run(build_loop(storage, transport))
    assert summary.cooldown
    assert summary.seen == 0
    assert len(transport.fetch_calls) == 1

    def later():
        return NOW + timedelta(minutes=2)

    summary = _run(build_loop(storage, transport, clock=later))
    assert not summary.cooldown
    assert summary.applied == 1
    assert CursorStore(storage).cooldown_until(SOURCE) is None


def test_quota_without_retry_after_uses_configured_cooldown(storage) -> None:
    transport = FakeTransport()
    transport.fetch_errors = [QuotaExceededError("slow mode")]
    config = PollConfig(page_size=10, backfill_every=0, jitter_seconds=0, cooldown_seconds=120)

    summary = _run(build_loop(storage, transport, config=config))

    assert summary.cooldown
    assert CursorStore(storage).cooldown_until(SOURCE) == NOW + timedelta(seconds=120)


def test_quota_during_processing_stops_batch(storage) -> None:
    transport = FakeTransport([make_message("100", LINE), make_message("101", OTHER_LINE)])
    transport.reaction_error = QuotaExceededError("flood wait", retry_after=30)

    summary = _run(build_loop(storage, transport))

    assert summary.seen == 1
    assert summary.cooldown
    assert summary.cursor_after == "100"
    assert CursorStore(storage).cooldown_until(SOURCE) == NOW + timedelta(seconds=30)


def test_failed_fetch_is_retried_with_half_page(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    transport.fetch_errors = [TransportError("timeout")]

    summary = _run(build_loop(storage, transport))

    assert transport.fetch_calls == [(None, 10), (None, 5)]
    assert summary.applied == 1


def test_second_fetch_failure_propagates(storage) -> None:
    transport = FakeTransport([make_message("100", LINE)])
    transport.fetch_errors = [TransportError("timeout"), TransportError("timeout")]

    with pytest.raises(TransportError):
        _run(build_loop(storage, transport))
    assert CursorStore(storage).get(SOURCE) is None


class ExplodingProcessor:
    def __init__(self, bad_id: str) -> None:
        self.bad_id = bad_id
        self.quota_signal = None
        self.handled: list[str] = []

    async def handle(self, message):
        if message.message_id == self.bad_id:
            raise ValueError("corrupt row")
        self.handled.append(message.message_id)
        return MessageOutcome("skip_empty")


def test_unexpected_error_is_counted_and_batch_continues(storage) -> None:
    transport = FakeTransport([make_message(str(i), "x") for i in (100, 101, 102)])
    processor = ExplodingProcessor("101")
    loop = PollLoop(
        SOURCE,
        transport,
        CursorStore(storage),
        processor,
        PollConfig(page_size=10, backfill_every=0, jitter_seconds=0),
        clock=fixed_clock,
        monotonic=lambda: 0.0,
        sleep=FakeSleep(),
    )

    summary = _run(loop)

    assert summary.errors == 1
    assert processor.handled == ["100", "102"]
    assert summary.cursor_after == "102"


def test_run_from_includes_start_and_leaves_cursor(storage) -> None:
    transport = FakeTransport([make_message(str(i), "chatter") for i in range(100, 105)])
    loop = build_loop(storage, transport)

    summary = asyncio.run(loop.run_from("102"))

    assert summary.seen == 3
    assert summary.cursor_before == "102"
    assert summary.cursor_after == "104"
    assert CursorStore(storage).get(SOURCE) is None


def test_run_from_can_exclude_start(storage) -> None:
    transport = FakeTransport([make_message(str(i), "chatter") for i in range(100, 105)])

    summary = asyncio.run(build_loop(storage, transport).run_from("102", include_start=False))

    assert summary.seen == 2


def test_run_from_pages_forward(storage) -> None:
    transport = FakeTransport([make_message(str(i), "chatter") for i in range(100, 105)])
    loop = build_loop(storage, transport, config=PollConfig(page_size=2, backfill_every=0, jitter_seconds=0))

    summary = asyncio.run(loop.run_from("100", include_start=False))

    assert summary.seen == 4
    assert summary.cursor_after == "104"
    assert [after for after, _ in transport.fetch_calls] == ["100", "102", "104"]


def test_jitter_sleeps_before_each_fetch(storage) -> None:
    sleep = FakeSleep()
    transport = FakeTransport([make_message("100", LINE)])
    loop = build_loop(
        storage,
        transport,
        config=PollConfig(page_size=10, backfill_every=1, jitter_seconds=1.5),
        sleep=sleep,
    )

    _run(loop)

    assert len(sleep.delays) == len(transport.fetch_calls) == 2
    assert all(0 <= delay <= 1.5 for delay in sleep.delays)
