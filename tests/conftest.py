from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from adapters.chat_notifier import ChatNotifier
from adapters.sqlite_storage import SQLiteStorage
from core.config import LeagueConfig, NotificationConfig, PollConfig, ReconcileConfig
from core.cursor import CursorStore
from core.models import ChatMessage, ParsedCandidate, ResolvedCandidate
from core.parser import LineParser
from core.poller import PollLoop
from core.ports import DirectMessageResult
from core.processor import MessageProcessor
from core.reconciler import Reconciler
from core.registry import Registry, RegistryCache
from core.resolver import SlotResolver

NOW = datetime(2026, 10, 14, 18, 0, tzinfo=timezone.utc)
SOURCE = "@league_results"
BOT_ID = "999"

LEAGUE = LeagueConfig(
    divisions=("Gold", "Silver", "Bronze"),
    map_prefix="dod_",
    fallback_maps=("dod_x",),
    banner_patterns=(r"^\s*WEEK \d+ RESULTS",),
    bot_author_ids=(BOT_ID,),
)


def fixed_clock() -> datetime:
    return NOW


class RecordingStorage(SQLiteStorage):
    """SQLite storage that remembers every batched result write."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.writes: list[tuple] = []

    def write_result(self, division, row, wl1, score1, wl2, score2) -> None:
        self.writes.append((division, row, wl1, score1, wl2, score2))
        super().write_result(division, row, wl1, score1, wl2, score2)


def seed_league(storage: SQLiteStorage) -> None:
    for name in ("Wickeds", "Avengers", "The Ravens", "Iron Wolves"):
        storage.add_team("Gold", name.upper())
    for name in ("Hawks", "Panthers"):
        storage.add_team("Silver", name.upper())

    storage.add_team_alias("wicks", "WICKEDS")
    storage.add_team_alias("wolves", "IRON WOLVES")
    storage.add_team_alias("birds", "THE RAVENS")
    storage.add_team_alias("birds", "HAWKS")

    today = NOW.date()
    monday = today - timedelta(days=today.weekday())
    storage.add_block("Gold", "g1", "dod_lennon2", monday - timedelta(days=14))
    storage.add_block("Gold", "g2", "dod_lennon2", monday)
    storage.add_block("Gold", "g3", "dod_caen", monday + timedelta(days=7))
    # Silver is stored the way a sheet import would leave it.
    storage.add_block("silver", "s1", "dod_lennon2", monday)

    storage.add_slot("Gold", 10, "g1", "WICKEDS", "IRON WOLVES")
    storage.add_slot("Gold", 20, "g2", "WICKEDS", "AVENGERS")
    storage.add_slot("Gold", 21, "g2", "THE RAVENS", "IRON WOLVES")
    storage.add_slot("Gold", 22, "g2", "GOLD A", "GOLD B")
    storage.add_slot("Gold", 30, "g3", "AVENGERS", "THE RAVENS")
    storage.add_slot("silver", 5, "s1", "Hawks", "Panthers")


@pytest.fixture
def storage(tmp_path) -> RecordingStorage:
    store = RecordingStorage(str(tmp_path / "league.db"))
    store.init_db()
    seed_league(store)
    return store


@pytest.fixture
def registry(storage) -> Registry:
    return Registry.build(storage, LEAGUE)


def make_message(
    message_id: str,
    text: str,
    *,
    author_id: str = "42",
    created_at: Optional[datetime] = None,
    edited_at: Optional[datetime] = None,
) -> ChatMessage:
    return ChatMessage(
        source_key=SOURCE,
        message_id=message_id,
        author_id=author_id,
        text=text,
        created_at=created_at or NOW - timedelta(minutes=5),
        edited_at=edited_at,
    )


def resolve_line(text: str, registry: Registry) -> ResolvedCandidate:
    parsed = LineParser(LEAGUE.divisions).parse(text, registry)
    assert isinstance(parsed, ParsedCandidate), parsed
    return ResolvedCandidate(
        parsed=parsed,
        team_a=registry.resolve_team(parsed.left.team),
        team_b=registry.resolve_team(parsed.right.team),
    )


class FakeTransport:
    """In-memory chat channel."""

    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self.messages: dict[int, ChatMessage] = {}
        for message in messages:
            self.put(message)
        self.fetch_calls: list[tuple[Optional[str], int]] = []
        self.fetch_errors: list[Exception] = []
        self.reactions: list[tuple[str, str]] = []
        self.replies: list[str] = []
        self.dms: list[tuple[str, str]] = []
        self.reaction_error: Optional[Exception] = None

    def put(self, message: ChatMessage) -> None:
        self.messages[message.sort_key] = message

    async def fetch_messages(self, source_key, after_id, limit):
        self.fetch_calls.append((after_id, limit))
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        ordered = [self.messages[key] for key in sorted(self.messages)]
        if after_id is None:
            return ordered[-limit:]
        return [message for message in ordered if message.sort_key > int(after_id)][:limit]

    async def fetch_one(self, source_key, message_id):
        return self.messages.get(int(message_id))

    async def post_reaction(self, source_key, message_id, emoji):
        if self.reaction_error is not None:
            raise self.reaction_error
        self.reactions.append((message_id, emoji))

    async def post_reply(self, source_key, text):
        self.replies.append(text)

    async def send_direct_message(self, user_id, text):
        self.dms.append((user_id, text))
        return DirectMessageResult(ok=True)


def build_processor(
    storage: SQLiteStorage,
    transport: FakeTransport,
    force_reparse: bool = False,
) -> MessageProcessor:
    return MessageProcessor(
        league=LEAGUE,
        registry_cache=RegistryCache(storage, LEAGUE, state=storage),
        resolver=SlotResolver(storage, LEAGUE.divisions, clock=fixed_clock),
        reconciler=Reconciler(storage, storage, ReconcileConfig(force_reparse=force_reparse), clock=fixed_clock),
        receipts=storage,
        notifier=ChatNotifier(transport, NotificationConfig(), map_prefix=LEAGUE.map_prefix),
    )


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def build_loop(
    storage: SQLiteStorage,
    transport: FakeTransport,
    config: Optional[PollConfig] = None,
    force_reparse: bool = False,
    clock=fixed_clock,
    monotonic=None,
    sleep: Optional[FakeSleep] = None,
) -> PollLoop:
    return PollLoop(
        SOURCE,
        transport,
        CursorStore(storage),
        build_processor(storage, transport, force_reparse=force_reparse),
        config or PollConfig(page_size=10, backfill_every=0, jitter_seconds=0),
        clock=clock,
        monotonic=monotonic or (lambda: 0.0),
        sleep=sleep or FakeSleep(),
    )

