"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, transport and notification
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence, Tuple

from core.models import ApplyResult, ChatMessage, Receipt, ScheduleBlock, ScheduleSlot

RESULT_FIELDS = ("wl1", "score1", "wl2", "score2")


class StatePort(Protocol):
    """String key-value persistence for cursors and loop state."""

    def get_state(self, key: str) -> Optional[str]:
        ...

    def set_state(self, key: str, value: str) -> None:
        ...

    def delete_state(self, key: str) -> None:
        ...


class RegistrySourcePort(Protocol):
    """Raw tables the registry is built from."""

    def load_team_rosters(self) -> dict[str, list[str]]:
        ...

    def load_team_aliases(self) -> list[Tuple[str, str]]:
        ...

    def load_map_aliases(self) -> list[Tuple[str, str]]:
        ...

    def load_schedule_maps(self) -> dict[str, list[str]]:
        ...


class SchedulePort(Protocol):
    """Schedule grid reads and the single batched result write."""

    def list_blocks(self, division: str) -> Sequence[ScheduleBlock]:
        ...

    def get_slot(self, division: str, row: int) -> Optional[ScheduleSlot]:
        ...

    def write_result(
        self,
        division: str,
        row: int,
        wl1: str,
        score1: Optional[int],
        wl2: str,
        score2: Optional[int],
    ) -> None:
        ...

    def is_protected(self, division: str, row: int, fields: Iterable[str]) -> bool:
        ...


class ReceiptLogPort(Protocol):
    """Append-only receipt log."""

    def append_receipt(self, receipt: Receipt) -> None:
        ...

    def latest_for_slot(self, division: str, row: int) -> Optional[Receipt]:
        ...

    def latest_for_message(self, source_key: str, message_id: str) -> Optional[Receipt]:
        ...


@dataclass(frozen=True)
class DirectMessageResult:
    ok: bool
    suppressed: bool = False


class TransportPort(Protocol):
    """Chat transport operations. Raises TransportError/QuotaExceededError."""

    async def fetch_messages(
        self, source_key: str, after_id: Optional[str], limit: int
    ) -> list[ChatMessage]:
        ...

    async def fetch_one(self, source_key: str, message_id: str) -> Optional[ChatMessage]:
        ...

    async def post_reaction(self, source_key: str, message_id: str, emoji: str) -> None:
        ...

    async def post_reply(self, source_key: str, text: str) -> None:
        ...

    async def send_direct_message(self, user_id: str, text: str) -> DirectMessageResult:
        ...


@dataclass(frozen=True)
class AuthorIssue:
    """Something the author can fix: unknown or ambiguous teams, or no slot."""

    kind: str
    map_token: str
    teams: Tuple[str, ...]
    division: Optional[str] = None
    candidates: Tuple[str, ...] = ()


class NotifierPort(Protocol):
    """Acknowledgements and author guidance (best effort)."""

    async def acknowledge(self, message: ChatMessage, result: ApplyResult) -> None:
        ...

    async def guide_author(self, message: ChatMessage, issue: AuthorIssue) -> None:
        ...
