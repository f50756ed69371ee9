"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from telethon.tl.custom import Message

from core.models import ChatMessage


def build_chat_message(message: Message, source_key: str) -> ChatMessage:
    """Build a core ChatMessage from a Telethon Message.

    The configured source key is passed in rather than derived, so cursors
    and receipts stay keyed the way the operator wrote them in config.json.
    """

    sender_id = getattr(message, "sender_id", None)
    return ChatMessage(
        source_key=source_key,
        message_id=str(message.id),
        author_id=str(sender_id) if sender_id is not None else "",
        text=message.raw_text or "",
        created_at=message.date,
        edited_at=getattr(message, "edit_date", None),
    )
