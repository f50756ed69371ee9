"""SQLite storage adapter.

Implements the core state, registry-source, schedule and receipt-log ports
using a single SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Iterable, Optional, Sequence, Tuple

from core.models import Receipt, ReceiptNote, ScheduleBlock, ScheduleSlot


def _parse_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def _parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(raw) if raw else None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - state: key/value pairs for cursors, cooldowns and registry revision
        - teams / team_aliases / map_aliases: registry source tables
        - schedule_blocks / schedule_slots: the schedule grid
        - protected_ranges: rows (and fields) closed to automated writes
        - receipts: append-only audit log of reconciliation outcomes
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS teams (
                    division TEXT NOT NULL,
                    name TEXT NOT NULL,
                    PRIMARY KEY (division, name)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS team_aliases (
                    alias TEXT NOT NULL,
                    canonical TEXT NOT NULL,
                    PRIMARY KEY (alias, canonical)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS map_aliases (
                    alias TEXT PRIMARY KEY,
                    canonical TEXT NOT NULL
                )
                """
            )
            # Division names match case-insensitively, as roster divisions do.
            # week_date is ISO text; NULL when the header carried no date.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schedule_blocks (
                    division TEXT NOT NULL COLLATE NOCASE,
                    block_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    map_token TEXT NOT NULL,
                    week_date TEXT,
                    PRIMARY KEY (division, block_id)
                )
                """
            )
            # row_index is the slot identity within a division and never changes.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schedule_slots (
                    division TEXT NOT NULL COLLATE NOCASE,
                    row_index INTEGER NOT NULL,
                    block_id TEXT NOT NULL,
                    team1 TEXT NOT NULL,
                    team2 TEXT NOT NULL,
                    wl1 TEXT NOT NULL DEFAULT '',
                    score1 INTEGER,
                    wl2 TEXT NOT NULL DEFAULT '',
                    score2 INTEGER,
                    PRIMARY KEY (division, row_index)
                )
                """
            )
            # fields is a comma separated subset of wl1,score1,wl2,score2 or '*'.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS protected_ranges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    division TEXT NOT NULL COLLATE NOCASE,
                    row_start INTEGER NOT NULL,
                    row_end INTEGER NOT NULL,
                    fields TEXT NOT NULL DEFAULT '*',
                    description TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    division TEXT NOT NULL COLLATE NOCASE,
                    row_index INTEGER NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    map_token TEXT,
                    team1 TEXT,
                    team2 TEXT,
                    score1 INTEGER,
                    score2 INTEGER,
                    message_id TEXT,
                    author_id TEXT,
                    note TEXT NOT NULL,
                    content_hash TEXT,
                    edited_at TIMESTAMP,
                    source_key TEXT NOT NULL DEFAULT ''
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS receipts_slot ON receipts (division, row_index)")
            conn.execute("CREATE INDEX IF NOT EXISTS receipts_message ON receipts (source_key, message_id)")

    # StatePort ---------------------------------------------------------

    def get_state(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO state (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def delete_state(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM state WHERE key = ?", (key,))

    # RegistrySourcePort ------------------------------------------------

    def load_team_rosters(self) -> dict[str, list[str]]:
        rosters: dict[str, list[str]] = {}
        with self._connect() as conn:
            rows = conn.execute("SELECT division, name FROM teams ORDER BY division, name").fetchall()
        for row in rows:
            rosters.setdefault(row["division"], []).append(row["name"])
        return rosters

    def load_team_aliases(self) -> list[Tuple[str, str]]:
        with self._connect() as conn:
            rows = conn.execute("SELECT alias, canonical FROM team_aliases").fetchall()
        return [(row["alias"], row["canonical"]) for row in rows]

    def load_map_aliases(self) -> list[Tuple[str, str]]:
        with self._connect() as conn:
            rows = conn.execute("SELECT alias, canonical FROM map_aliases").fetchall()
        return [(row["alias"], row["canonical"]) for row in rows]

    def load_schedule_maps(self) -> dict[str, list[str]]:
        maps: dict[str, list[str]] = {}
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT division, map_token FROM schedule_blocks ORDER BY division, position"
            ).fetchall()
        for row in rows:
            maps.setdefault(row["division"], []).append(row["map_token"])
        return maps

    # SchedulePort ------------------------------------------------------

    def list_blocks(self, division: str) -> Sequence[ScheduleBlock]:
        with self._connect() as conn:
            block_rows = conn.execute(
                "SELECT * FROM schedule_blocks WHERE division = ? ORDER BY position",
                (division,),
            ).fetchall()
            slot_rows = conn.execute(
                "SELECT * FROM schedule_slots WHERE division = ? ORDER BY row_index",
                (division,),
            ).fetchall()

        slots_by_block: dict[str, list[ScheduleSlot]] = {}
        for row in slot_rows:
            slots_by_block.setdefault(row["block_id"], []).append(self._slot_from_row(row))
        return [
            ScheduleBlock(
                division=row["division"],
                block_id=row["block_id"],
                map_token=row["map_token"],
                week_date=_parse_date(row["week_date"]),
                slots=tuple(slots_by_block.get(row["block_id"], [])),
            )
            for row in block_rows
        ]

    def get_slot(self, division: str, row: int) -> Optional[ScheduleSlot]:
        with self._connect() as conn:
            found = conn.execute(
                "SELECT * FROM schedule_slots WHERE division = ? AND row_index = ?",
                (division, row),
            ).fetchone()
        return self._slot_from_row(found) if found else None

    def write_result(
        self,
        division: str,
        row: int,
        wl1: str,
        score1: Optional[int],
        wl2: str,
        score2: Optional[int],
    ) -> None:
        """Write all four result fields in one statement."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE schedule_slots
                SET wl1 = ?, score1 = ?, wl2 = ?, score2 = ?
                WHERE division = ? AND row_index = ?
                """,
                (wl1, score1, wl2, score2, division, row),
            )
            if cur.rowcount != 1:
                raise LookupError(f"No schedule slot {division}/{row}")

    def is_protected(self, division: str, row: int, fields: Iterable[str]) -> bool:
        wanted = set(fields)
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT fields FROM protected_ranges
                WHERE division = ? AND row_start <= ? AND row_end >= ?
                """,
                (division, row, row),
            ).fetchall()
        for found in rows:
            covered = {part.strip() for part in found["fields"].split(",")}
            if "*" in covered or covered & wanted:
                return True
        return False

    @staticmethod
    def _slot_from_row(row: sqlite3.Row) -> ScheduleSlot:
        return ScheduleSlot(
            division=row["division"],
            row=row["row_index"],
            block_id=row["block_id"],
            team1=row["team1"],
            team2=row["team2"],
            wl1=row["wl1"] or "",
            score1=row["score1"],
            wl2=row["wl2"] or "",
            score2=row["score2"],
        )

    # ReceiptLogPort ----------------------------------------------------

    def append_receipt(self, receipt: Receipt) -> None:
        """Persist a receipt to the append-only receipts table."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO receipts (
                    division,
                    row_index,
                    created_at,
                    map_token,
                    team1,
                    team2,
                    score1,
                    score2,
                    message_id,
                    author_id,
                    note,
                    content_hash,
                    edited_at,
                    source_key
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    receipt.division,
                    receipt.row,
                    receipt.created_at.isoformat(),
                    receipt.map_token,
                    receipt.team1,
                    receipt.team2,
                    receipt.score1,
                    receipt.score2,
                    receipt.message_id,
                    receipt.author_id,
                    receipt.note.value,
                    receipt.content_hash,
                    receipt.edited_at.isoformat() if receipt.edited_at else None,
                    receipt.source_key,
                ),
            )

    def latest_for_slot(self, division: str, row: int) -> Optional[Receipt]:
        with self._connect() as conn:
            found = conn.execute(
                "SELECT * FROM receipts WHERE division = ? AND row_index = ? ORDER BY id DESC LIMIT 1",
                (division, row),
            ).fetchone()
        return self._receipt_from_row(found) if found else None

    def latest_for_message(self, source_key: str, message_id: str) -> Optional[Receipt]:
        """Latest receipt for one message; ids are only unique within a chat."""

        with self._connect() as conn:
            found = conn.execute(
                """
                SELECT * FROM receipts WHERE source_key = ? AND message_id = ?
                ORDER BY id DESC LIMIT 1
                """,
                (source_key, str(message_id)),
            ).fetchone()
        return self._receipt_from_row(found) if found else None

    def count_receipts(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM receipts").fetchone()[0]

    @staticmethod
    def _receipt_from_row(row: sqlite3.Row) -> Receipt:
        return Receipt(
            division=row["division"],
            row=row["row_index"],
            created_at=datetime.fromisoformat(row["created_at"]),
            map_token=row["map_token"],
            team1=row["team1"],
            team2=row["team2"],
            score1=row["score1"],
            score2=row["score2"],
            message_id=row["message_id"],
            author_id=row["author_id"],
            note=ReceiptNote(row["note"]),
            content_hash=row["content_hash"],
            edited_at=_parse_datetime(row["edited_at"]),
            source_key=row["source_key"],
        )

    # League data helpers -----------------------------------------------

    def add_team(self, division: str, name: str) -> None:
        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO teams (division, name) VALUES (?, ?)", (division, name))

    def add_team_alias(self, alias: str, canonical: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO team_aliases (alias, canonical) VALUES (?, ?)",
                (alias, canonical),
            )

    def add_map_alias(self, alias: str, canonical: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO map_aliases (alias, canonical) VALUES (?, ?)
                ON CONFLICT(alias) DO UPDATE SET canonical = excluded.canonical
                """,
                (alias, canonical),
            )

    def add_block(
        self,
        division: str,
        block_id: str,
        map_token: str,
        week_date: Optional[date],
        position: Optional[int] = None,
    ) -> None:
        with self._connect() as conn:
            if position is None:
                position = conn.execute(
                    "SELECT COALESCE(MAX(position), -1) + 1 FROM schedule_blocks WHERE division = ?",
                    (division,),
                ).fetchone()[0]
            conn.execute(
                """
                INSERT INTO schedule_blocks (division, block_id, position, map_token, week_date)
                VALUES (?, ?, ?, ?, ?)
                """,
                (division, block_id, position, map_token, week_date.isoformat() if week_date else None),
            )

    def add_slot(self, division: str, row: int, block_id: str, team1: str, team2: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO schedule_slots (division, row_index, block_id, team1, team2)
                VALUES (?, ?, ?, ?, ?)
                """,
                (division, row, block_id, team1, team2),
            )

    def protect_rows(
        self,
        division: str,
        row_start: int,
        row_end: int,
        fields: Iterable[str] = ("*",),
        description: Optional[str] = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO protected_ranges (division, row_start, row_end, fields, description)
                VALUES (?, ?, ?, ?, ?)
                """,
                (division, row_start, row_end, ",".join(fields), description),
            )

