"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class LeagueConfig:
    """Divisions, map grammar and banner detection for one league."""

    divisions: Tuple[str, ...]
    map_prefix: str = "dod_"
    allow_unknown_maps: bool = False
    fallback_maps: Tuple[str, ...] = ()
    banner_patterns: Tuple[str, ...] = ()
    bot_author_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PollConfig:
    """Bounds for a single poll invocation."""

    page_size: int = 50
    backfill_every: int = 5
    backfill_window_minutes: int = 120
    backfill_max: int = 20
    max_messages: int = 100
    time_budget_seconds: float = 240.0
    safety_margin_seconds: float = 20.0
    jitter_seconds: float = 1.5
    cooldown_seconds: float = 300.0


@dataclass(frozen=True)
class ReconcileConfig:
    force_reparse: bool = False


@dataclass(frozen=True)
class NotificationConfig:
    """Reactions and guidance settings consumed by the notifier adapter."""

    reactions: Dict[str, str] = field(
        default_factory=lambda: {"new": "✅", "edit": "✏️", "no_change": "👌"}
    )
    reply_on_edit: bool = True
    dm_cooldown_minutes: int = 30
