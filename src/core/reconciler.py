"""Validate a resolved candidate against its slot and apply it with a receipt."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from core.config import ReconcileConfig
from core.models import (
    Ambiguous,
    ApplyResult,
    ChatMessage,
    Placeholder,
    Receipt,
    ReceiptNote,
    ResolvedCandidate,
    SlotTarget,
)
from core.ports import RESULT_FIELDS, ReceiptLogPort, SchedulePort
from core.registry import Registry
from core.text import clean_team_token

LOGGER = logging.getLogger(__name__)

AMBIGUOUS_ALIAS = "ambiguous_alias"
ROW_TEAM_MISMATCH = "row_team_mismatch"
PLACEHOLDER_TOKEN = "placeholder_token"
PROTECTED = "protected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def win_loss(score1: int, score2: int) -> Tuple[str, str]:
    """Return (wl1, wl2); a tie leaves both flags empty."""

    if score1 > score2:
        return "W", "L"
    if score2 > score1:
        return "L", "W"
    return "", ""


class Reconciler:
    """Decide NEW / EDIT / no-change for one slot and write the outcome."""

    def __init__(
        self,
        schedule: SchedulePort,
        receipts: ReceiptLogPort,
        config: ReconcileConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._schedule = schedule
        self._receipts = receipts
        self.force_reparse = config.force_reparse
        self._clock = clock

    def apply(
        self,
        target: SlotTarget,
        candidate: ResolvedCandidate,
        message: ChatMessage,
        content_hash: str,
        registry: Registry,
    ) -> ApplyResult:
        """Apply the candidate to the target slot.

        Rejections (ambiguous alias, team mismatch, placeholder, protected
        range) never touch the slot or the receipt log.
        """

        if isinstance(candidate.team_a, Ambiguous) or isinstance(candidate.team_b, Ambiguous):
            return ApplyResult(ok=False, reason=AMBIGUOUS_ALIAS)

        parsed = candidate.parsed
        name_a = candidate.team_a.name
        name_b = candidate.team_b.name
        row_a, row_b = clean_team_token(target.team1), clean_team_token(target.team2)
        if (name_a, name_b) == (row_a, row_b):
            score1, score2 = parsed.score1, parsed.score2
        elif (name_a, name_b) == (row_b, row_a):
            score1, score2 = parsed.score2, parsed.score1
        else:
            LOGGER.info(
                "Row %s/%s holds %s vs %s, message named %s vs %s",
                target.division,
                target.row,
                target.team1,
                target.team2,
                name_a,
                name_b,
            )
            return ApplyResult(ok=False, reason=ROW_TEAM_MISMATCH)

        if (
            isinstance(candidate.team_a, Placeholder)
            or isinstance(candidate.team_b, Placeholder)
            or registry.is_placeholder(target.team1)
            or registry.is_placeholder(target.team2)
        ):
            return ApplyResult(ok=False, reason=PLACEHOLDER_TOKEN)

        wl1, wl2 = win_loss(score1, score2)

        # Both reads happen before any mutation so "was X, now Y" is accurate.
        prior_receipt = self._receipts.latest_for_slot(target.division, target.row)
        slot = self._schedule.get_slot(target.division, target.row)
        prior_scores = (slot.score1, slot.score2) if slot else (None, None)

        if self._schedule.is_protected(target.division, target.row, RESULT_FIELDS):
            LOGGER.warning("Row %s/%s is write-protected; skipping", target.division, target.row)
            return ApplyResult(ok=False, reason=PROTECTED, prior_receipt=prior_receipt, prior_scores=prior_scores)

        unchanged = prior_scores == (score1, score2)
        if self.force_reparse and unchanged:
            note: Optional[ReceiptNote] = ReceiptNote.REPARSE_NOCHANGE
        elif not self.force_reparse and unchanged and prior_receipt is not None:
            note = ReceiptNote.EDIT_NOCHANGE
        else:
            note = None

        if note is not None:
            receipt = self._receipt(target, message, content_hash, score1, score2, note)
            self._receipts.append_receipt(receipt)
            return ApplyResult(
                ok=True,
                no_change=True,
                receipt=receipt,
                prior_receipt=prior_receipt,
                prior_scores=prior_scores,
            )

        self._schedule.write_result(target.division, target.row, wl1, score1, wl2, score2)
        if parsed.forfeit:
            note = ReceiptNote.FF
        elif self.force_reparse and prior_receipt is not None:
            note = ReceiptNote.REPARSE_APPLIED
        elif prior_receipt is not None:
            note = ReceiptNote.EDIT
        else:
            note = ReceiptNote.NEW
        receipt = self._receipt(target, message, content_hash, score1, score2, note)
        self._receipts.append_receipt(receipt)
        LOGGER.info(
            "%s %s/%s %s %s-%s %s (was %s-%s)",
            note.value,
            target.division,
            target.row,
            target.team1,
            score1,
            score2,
            target.team2,
            prior_scores[0],
            prior_scores[1],
        )
        return ApplyResult(
            ok=True,
            applied_new=True,
            receipt=receipt,
            prior_receipt=prior_receipt,
            prior_scores=prior_scores,
        )

    def _receipt(
        self,
        target: SlotTarget,
        message: ChatMessage,
        content_hash: str,
        score1: int,
        score2: int,
        note: ReceiptNote,
    ) -> Receipt:
        return Receipt(
            division=target.division,
            row=target.row,
            created_at=self._clock(),
            map_token=target.map_token,
            team1=target.team1,
            team2=target.team2,
            score1=score1,
            score2=score2,
            message_id=message.message_id,
            author_id=message.author_id,
            note=note,
            content_hash=content_hash,
            edited_at=message.edited_at,
            source_key=message.source_key,
        )
