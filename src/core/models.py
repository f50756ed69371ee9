"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple, Union


def message_id_key(message_id: str) -> int:
    """Return the sortable integer form of a string message id.

    Ids are unsigned integers that may exceed 64 bits, so they are compared
    as Python ints and never as floats.
    """

    return int(str(message_id).strip())


@dataclass(frozen=True)
class ChatMessage:
    """One observed chat message. Edits keep the id and change the text."""

    source_key: str
    message_id: str
    author_id: str
    text: str
    created_at: datetime
    edited_at: Optional[datetime] = None

    @property
    def sort_key(self) -> int:
        return message_id_key(self.message_id)

    @property
    def last_activity(self) -> datetime:
        return self.edited_at or self.created_at


# Team references -----------------------------------------------------------


@dataclass(frozen=True)
class Canonical:
    name: str


@dataclass(frozen=True)
class Placeholder:
    """Bracket-seeding slot name such as ``GOLD A``; never scored."""

    name: str


@dataclass(frozen=True)
class Ambiguous:
    """An alias that points at more than one canonical team."""

    name: str
    candidates: Tuple[str, ...]


@dataclass(frozen=True)
class Unresolved:
    """A cleaned token that matched neither a canonical name nor an alias."""

    name: str


TeamRef = Union[Canonical, Placeholder, Ambiguous, Unresolved]


# Parsing --------------------------------------------------------------------


@dataclass(frozen=True)
class SideParse:
    """One side of a score line, as typed by the author."""

    team: str
    score: Optional[int]
    forfeit: bool


@dataclass(frozen=True)
class ParsedCandidate:
    division_hint: Optional[str]
    map_token: str
    left: SideParse
    right: SideParse
    operator: str
    score1: int
    score2: int
    forfeit: bool
    anomalies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ParseError:
    """Typed parse failure; the message is skipped and counted."""

    reason: str
    detail: str = ""


# Schedule -------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduleSlot:
    """One scheduled matchup row inside a weekly block."""

    division: str
    row: int
    block_id: str
    team1: str
    team2: str
    wl1: str = ""
    score1: Optional[int] = None
    wl2: str = ""
    score2: Optional[int] = None


@dataclass(frozen=True)
class ScheduleBlock:
    """A weekly group of slots under one map header."""

    division: str
    block_id: str
    map_token: str
    week_date: Optional[date]
    slots: Tuple[ScheduleSlot, ...]


@dataclass(frozen=True)
class SlotTarget:
    """The schedule slot a candidate resolved to."""

    division: str
    block_id: str
    row: int
    team1: str
    team2: str
    map_token: str
    week_date: Optional[date]


# Receipts -------------------------------------------------------------------


class ReceiptNote(str, Enum):
    NEW = "NEW"
    EDIT = "EDIT"
    EDIT_NOCHANGE = "EDIT_NOCHANGE"
    REPARSE_APPLIED = "REPARSE_APPLIED"
    REPARSE_NOCHANGE = "REPARSE_NOCHANGE"
    FF = "FF"
    BYE_AUTO = "BYE_AUTO"


@dataclass(frozen=True)
class Receipt:
    """Append-only audit record for one reconciliation outcome."""

    division: str
    row: int
    created_at: datetime
    map_token: str
    team1: str
    team2: str
    score1: Optional[int]
    score2: Optional[int]
    message_id: str
    author_id: str
    note: ReceiptNote
    content_hash: str
    edited_at: Optional[datetime] = None
    source_key: str = ""


@dataclass(frozen=True)
class ResolvedCandidate:
    """A parsed candidate together with the registry view of its teams."""

    parsed: ParsedCandidate
    team_a: TeamRef
    team_b: TeamRef


@dataclass(frozen=True)
class ApplyResult:
    ok: bool
    reason: Optional[str] = None
    applied_new: bool = False
    no_change: bool = False
    receipt: Optional[Receipt] = None
    prior_receipt: Optional[Receipt] = None
    prior_scores: Tuple[Optional[int], Optional[int]] = (None, None)


# Run accounting -------------------------------------------------------------


@dataclass(frozen=True)
class MessageOutcome:
    """What happened to one message inside a batch."""

    status: str
    parsed: bool = False
    result: Optional[ApplyResult] = None


@dataclass
class RunSummary:
    """Counts surfaced once per poll invocation."""

    source_key: str
    seen: int = 0
    parsed: int = 0
    applied: int = 0
    new: int = 0
    edits: int = 0
    no_change: int = 0
    errors: int = 0
    skipped: Counter = field(default_factory=Counter)
    stopped_early: Optional[str] = None
    cooldown: bool = False
    cursor_before: Optional[str] = None
    cursor_after: Optional[str] = None

    def record(self, outcome: MessageOutcome) -> None:
        self.seen += 1
        if outcome.parsed:
            self.parsed += 1
        result = outcome.result
        if result is not None and result.ok:
            if result.no_change:
                self.no_change += 1
            else:
                self.applied += 1
                if result.prior_receipt is None:
                    self.new += 1
                else:
                    self.edits += 1
            return
        if outcome.status == "error":
            self.errors += 1
            return
        self.skipped[outcome.status] += 1
