"""Application entry point for the scorekeeper poller."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

import settings
from adapters.chat_notifier import ChatNotifier
from adapters.notification_formatting import format_summary_line
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_transport import TelegramTransport
from client import build_client
from core.config import LeagueConfig, NotificationConfig, PollConfig, ReconcileConfig
from core.cursor import CursorStore
from core.errors import TransportError
from core.models import RunSummary
from core.poller import PollLoop
from core.processor import MessageProcessor
from core.reconciler import Reconciler
from core.registry import RegistryCache, request_reload
from core.resolver import SlotResolver
from get_session import authorize

NAME = "SCOREKEEPER"
FONT = "tarty-1"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    """Mask secret values (API hash, phone, 2FA) wherever they end up in a record."""

    def __init__(self, secrets: list[str]) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        for secret in self._secrets:
            text = text.replace(secret, "***")
        return text


def _secret_values(redact: dict) -> list[str]:
    if not redact.get("enabled", False):
        return []
    return [os.getenv(name, "") for name in redact.get("patterns", [])]


def _log_file_handler(file_cfg: dict) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/scorekeeper.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging() -> None:
    """Console and rotating-file logging from the ``logging`` config section."""

    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    if config.get("file", {}).get("enabled", False):
        handlers.append(_log_file_handler(config["file"]))
    if not handlers:
        return

    formatter = _RedactingFormatter(_secret_values(config.get("redact", {})))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)

    # Per-logger overrides, e.g. {"telethon": "WARNING"} to hide MTProto chatter.
    for name, name_level in config.get("loggers", {}).items():
        logging.getLogger(name).setLevel(str(name_level).upper())


def _league_config() -> LeagueConfig:
    return LeagueConfig(
        divisions=settings.DIVISIONS,
        map_prefix=settings.MAP_PREFIX,
        allow_unknown_maps=settings.ALLOW_UNKNOWN_MAPS,
        fallback_maps=settings.FALLBACK_MAPS,
        banner_patterns=settings.BANNER_PATTERNS,
        bot_author_ids=settings.BOT_AUTHOR_IDS,
    )


def _poll_config() -> PollConfig:
    return PollConfig(
        page_size=settings.POLL_PAGE_SIZE,
        backfill_every=settings.POLL_BACKFILL_EVERY,
        backfill_window_minutes=settings.POLL_BACKFILL_WINDOW_MINUTES,
        backfill_max=settings.POLL_BACKFILL_MAX,
        max_messages=settings.POLL_MAX_MESSAGES,
        time_budget_seconds=settings.POLL_TIME_BUDGET_SECONDS,
        safety_margin_seconds=settings.POLL_SAFETY_MARGIN_SECONDS,
        jitter_seconds=settings.POLL_JITTER_SECONDS,
        cooldown_seconds=settings.POLL_COOLDOWN_SECONDS,
    )


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _build_loops(client, storage: SQLiteStorage, force_reparse: bool) -> dict[str, PollLoop]:
    """Wire the core pipeline to SQLite and Telegram, one loop per source."""

    league = _league_config()
    notification_config = NotificationConfig(
        reactions=settings.REACTIONS,
        reply_on_edit=settings.REPLY_ON_EDIT,
        dm_cooldown_minutes=settings.DM_COOLDOWN_MINUTES,
    )
    transport = TelegramTransport(client, dm_cooldown_minutes=notification_config.dm_cooldown_minutes)
    notifier = ChatNotifier(transport, notification_config, map_prefix=league.map_prefix)
    registry_cache = RegistryCache(storage, league, state=storage)
    processor = MessageProcessor(
        league=league,
        registry_cache=registry_cache,
        resolver=SlotResolver(storage, league.divisions),
        reconciler=Reconciler(storage, storage, ReconcileConfig(force_reparse=force_reparse)),
        receipts=storage,
        notifier=notifier,
    )
    cursors = CursorStore(storage)
    poll_config = _poll_config()
    return {
        source_key: PollLoop(source_key, transport, cursors, processor, poll_config)
        for source_key in settings.SOURCES
    }


def _print_summary(summary: RunSummary) -> None:
    label = settings.SOURCE_ALIASES.get(summary.source_key, summary.source_key)
    table = Table(title=f"Run summary: {label}")
    table.add_column("metric")
    table.add_column("value", justify="right")
    for metric in ("seen", "parsed", "applied", "new", "edits", "no_change", "errors"):
        table.add_row(metric, str(getattr(summary, metric)))
    for reason, count in sorted(summary.skipped.items()):
        table.add_row(f"skipped: {reason}", str(count))
    table.add_row("cursor", f"{summary.cursor_before} -> {summary.cursor_after}")
    if summary.stopped_early:
        table.add_row("stopped early", summary.stopped_early)
    if summary.cooldown:
        table.add_row("cooldown", "yes")
    Console().print(table)


async def _connect(client) -> None:
    await client.connect()
    await authorize(client)


async def _poll_all(loops: dict[str, PollLoop]) -> list[RunSummary]:
    logger = logging.getLogger(__name__)
    summaries: list[RunSummary] = []
    for source_key, loop in loops.items():
        try:
            summary = await loop.run_once()
        except TransportError:
            logger.exception("Poll aborted for %s", source_key)
            continue
        logger.info("Run summary: %s", format_summary_line(summary))
        summaries.append(summary)
    return summaries


async def _run_forever(loops: dict[str, PollLoop]) -> None:
    logger = logging.getLogger(__name__)
    logger.info("Polling %s source(s) every %ss", len(loops), settings.POLL_INTERVAL_SECONDS)
    while True:
        await _poll_all(loops)
        await asyncio.sleep(settings.POLL_INTERVAL_SECONDS)


def _with_client(force_reparse: bool, work) -> None:
    """Connect, build the per-source loops, run ``work`` and disconnect."""

    storage = _open_storage()
    client = build_client()
    loops = _build_loops(client, storage, force_reparse)
    if not loops:
        raise RuntimeError("No enabled sources in config.json")

    async def _main() -> None:
        await _connect(client)
        try:
            await work(loops)
        finally:
            await client.disconnect()

    client.loop.run_until_complete(_main())


def _run() -> None:
    _print_banner()
    _configure_logging()
    logging.getLogger(__name__).info("Starting scorekeeper")
    _with_client(settings.FORCE_REPARSE, _run_forever)


def _poll(force_reparse: bool) -> None:
    _configure_logging()

    async def work(loops: dict[str, PollLoop]) -> None:
        for summary in await _poll_all(loops):
            _print_summary(summary)

    _with_client(force_reparse, work)


def _from_id(start_id: str, include_start: bool, source_key: Optional[str], force_reparse: bool) -> None:
    _configure_logging()

    async def work(loops: dict[str, PollLoop]) -> None:
        key = source_key or next(iter(loops))
        if key not in loops:
            raise RuntimeError(f"Source {key} is not enabled in config.json")
        summary = await loops[key].run_from(start_id, include_start=include_start)
        logging.getLogger(__name__).info("Replay summary: %s", format_summary_line(summary))
        _print_summary(summary)

    _with_client(force_reparse, work)


def _reload() -> None:
    _configure_logging()
    revision = request_reload(_open_storage())
    print(f"Registry reload requested (revision {revision}). Running pollers pick it up before their next message.")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="scorekeeper")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Poll every enabled source until interrupted")

    poll_parser = subparsers.add_parser("poll", help="Run one poll cycle for every enabled source")
    poll_parser.add_argument("--force-reparse", action="store_true", help="Re-apply unchanged messages")

    from_parser = subparsers.add_parser("from-id", help="Replay forward from a message id (cursor untouched)")
    from_parser.add_argument("message_id", help="Message id to start from")
    from_parser.add_argument("--exclude-start", action="store_true", help="Start after the given id")
    from_parser.add_argument("--source", help="Source key (defaults to the first enabled source)")
    from_parser.add_argument("--force-reparse", action="store_true", help="Re-apply unchanged messages")

    subparsers.add_parser("reload", help="Ask running pollers to rebuild team and map caches")

    args = parser.parse_args(argv)
    if args.command == "poll":
        _poll(args.force_reparse or settings.FORCE_REPARSE)
        return
    if args.command == "from-id":
        _from_id(
            args.message_id,
            include_start=not args.exclude_start,
            source_key=args.source,
            force_reparse=args.force_reparse or settings.FORCE_REPARSE,
        )
        return
    if args.command == "reload":
        _reload()
        return
    _run()


if __name__ == "__main__":
    main()
