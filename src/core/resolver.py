"""Locate the schedule slot a score line refers to."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional

from core.models import ScheduleBlock, SlotTarget
from core.ports import SchedulePort
from core.text import clean_team_token

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlotResolver:
    """Search divisions in order for a block on the map holding the team pair."""

    def __init__(
        self,
        schedule: SchedulePort,
        divisions: Iterable[str],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._schedule = schedule
        self._divisions = tuple(divisions)
        self._clock = clock

    def search_order(self, division_hint: Optional[str]) -> list[str]:
        order = list(self._divisions)
        if division_hint in order:
            order.remove(division_hint)
            order.insert(0, division_hint)
        return order

    def resolve(
        self,
        map_token: str,
        team_a: str,
        team_b: str,
        division_hint: Optional[str] = None,
    ) -> Optional[SlotTarget]:
        """Return the first division's matching slot, or None.

        Team names must already be canonical. Slot names are canonicalized
        the same way the registry cleans roster names, and the pair is matched
        in either order.
        """

        wanted = {team_a, team_b}
        today = self._clock().date()
        for division in self.search_order(division_hint):
            block = self._closest_block(self._schedule.list_blocks(division), map_token, today)
            if block is None:
                continue
            for slot in block.slots:
                team1, team2 = clean_team_token(slot.team1), clean_team_token(slot.team2)
                if {team1, team2} == wanted:
                    LOGGER.debug("Resolved %s %s vs %s to %s row %s", map_token, team_a, team_b, division, slot.row)
                    return SlotTarget(
                        division=division,
                        block_id=block.block_id,
                        row=slot.row,
                        team1=team1,
                        team2=team2,
                        map_token=block.map_token,
                        week_date=block.week_date,
                    )
        return None

    @staticmethod
    def _closest_block(
        blocks: Iterable[ScheduleBlock], map_token: str, today: date
    ) -> Optional[ScheduleBlock]:
        wanted = map_token.lower()
        best: Optional[ScheduleBlock] = None
        best_distance: Optional[int] = None
        undated: Optional[ScheduleBlock] = None
        for block in blocks:
            if block.map_token.strip().lower() != wanted:
                continue
            if block.week_date is None:
                # Undated headers are only used when no dated block matches.
                if undated is None:
                    undated = block
                continue
            distance = abs((block.week_date - today).days)
            if best_distance is None or distance < best_distance:
                best, best_distance = block, distance
        return best or undated
