"""Notifier adapter: reactions, edit replies and author DMs via the transport."""

from __future__ import annotations

import logging

from adapters.notification_formatting import format_edit_reply, format_guidance
from core.config import NotificationConfig
from core.models import ApplyResult, ChatMessage
from core.ports import AuthorIssue, TransportPort

LOGGER = logging.getLogger(__name__)


class ChatNotifier:
    """Confirm accepted results in-channel and guide authors privately."""

    def __init__(self, transport: TransportPort, config: NotificationConfig, map_prefix: str) -> None:
        self._transport = transport
        self._config = config
        self._map_prefix = map_prefix

    async def acknowledge(self, message: ChatMessage, result: ApplyResult) -> None:
        if result.no_change:
            kind = "no_change"
        elif result.prior_receipt is not None:
            kind = "edit"
        else:
            kind = "new"

        emoji = self._config.reactions.get(kind)
        if emoji:
            await self._transport.post_reaction(message.source_key, message.message_id, emoji)
        if kind == "edit" and self._config.reply_on_edit:
            await self._transport.post_reply(message.source_key, format_edit_reply(result))

    async def guide_author(self, message: ChatMessage, issue: AuthorIssue) -> None:
        if not message.author_id:
            LOGGER.info("No author id on message %s; guidance not sent", message.message_id)
            return
        text = format_guidance(issue, message.text, self._map_prefix)
        outcome = await self._transport.send_direct_message(message.author_id, text)
        if outcome.suppressed:
            LOGGER.debug("Guidance to %s suppressed (sent recently)", message.author_id)
        elif not outcome.ok:
            LOGGER.info("Guidance to %s could not be delivered", message.author_id)
