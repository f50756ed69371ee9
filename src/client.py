"""Telegram client factory for scorekeeper."""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

import settings

LOGGER = logging.getLogger(__name__)


def _session_path(session_name: str) -> str:
    if os.path.isabs(session_name):
        return session_name
    return os.path.join(settings.PROJECT_ROOT, session_name)


def build_client() -> TelegramClient:
    """Create a polling-only Telethon client from API_ID/API_HASH.

    The poller pulls history itself, so update dispatch is switched off.
    ``flood_sleep_threshold=0`` makes every FloodWait surface as an error
    that the poll loop turns into a cooldown instead of a silent sleep.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    session = _session_path(os.getenv("SESSION_NAME", "scorekeeper"))
    LOGGER.info("Initializing Telegram client (session %s)", session)
    return TelegramClient(
        session,
        int(api_id),
        api_hash,
        receive_updates=False,
        flood_sleep_threshold=0,
    )
