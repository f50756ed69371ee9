"""Static configuration for scorekeeper.

All user-editable settings (sources, league, polling, notifications) live in
a single JSON file for quick edits without touching Python.
"""

import json
import os

from core.source_keys import expand_source_key_variants

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite database.
DB_PATH = os.getenv("SCOREKEEPER_DB", os.path.join(PROJECT_ROOT, "scorekeeper.db"))

# Sources, league data and surface settings are loaded from config.json so
# operators can switch channels or tune polling without editing code.
CONFIG_PATH = os.getenv("SCOREKEEPER_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _normalize_sources(raw_sources: list[dict]) -> tuple[list[str], dict[str, str]]:
    """Return enabled source keys (config order) and an alias map."""

    sources: list[str] = []
    aliases: dict[str, str] = {}
    for entry in raw_sources:
        source_key = entry.get("source_key")
        if not source_key:
            continue
        if not entry.get("enabled", True):
            continue
        if source_key not in sources:
            sources.append(source_key)
        alias = entry.get("alias")
        if alias:
            # Mirror aliases onto equivalent chat_id forms to avoid mismatches.
            for key in expand_source_key_variants(source_key):
                aliases.setdefault(key, alias)
    return sources, aliases


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Enabled sources are polled in config order, each with its own cursor.
SOURCES, SOURCE_ALIASES = _normalize_sources(_CONFIG.get("sources", []))

# League definition: division order doubles as the slot search order.
_league = _CONFIG.get("league", {})
DIVISIONS = tuple(_league.get("divisions", []))
MAP_PREFIX = _league.get("map_prefix", "dod_")
ALLOW_UNKNOWN_MAPS = bool(_league.get("allow_unknown_maps", False))
FALLBACK_MAPS = tuple(_league.get("fallback_maps", []))
BANNER_PATTERNS = tuple(_league.get("banner_patterns", []))
BOT_AUTHOR_IDS = tuple(str(value) for value in _league.get("bot_author_ids", []))

# Poll loop bounds. Every invocation is capped by message count and time.
_poll = _CONFIG.get("poll", {})
POLL_INTERVAL_SECONDS = float(_poll.get("interval_seconds", 60))
POLL_PAGE_SIZE = int(_poll.get("page_size", 50))
POLL_BACKFILL_EVERY = int(_poll.get("backfill_every", 5))
POLL_BACKFILL_WINDOW_MINUTES = int(_poll.get("backfill_window_minutes", 120))
POLL_BACKFILL_MAX = int(_poll.get("backfill_max", 20))
POLL_MAX_MESSAGES = int(_poll.get("max_messages", 100))
POLL_TIME_BUDGET_SECONDS = float(_poll.get("time_budget_seconds", 240))
POLL_SAFETY_MARGIN_SECONDS = float(_poll.get("safety_margin_seconds", 20))
POLL_JITTER_SECONDS = float(_poll.get("jitter_seconds", 1.5))
POLL_COOLDOWN_SECONDS = float(_poll.get("cooldown_seconds", 300))

# Force-reparse re-applies messages even when their content hash is unchanged.
_reconcile = _CONFIG.get("reconcile", {})
FORCE_REPARSE = bool(_reconcile.get("force_reparse", False))

_notifications = _CONFIG.get("notifications", {})
REACTIONS = dict(_notifications.get("reactions", {"new": "✅", "edit": "✏️", "no_change": "👌"}))
REPLY_ON_EDIT = bool(_notifications.get("reply_on_edit", True))
DM_COOLDOWN_MINUTES = int(_notifications.get("dm_cooldown_minutes", 30))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
