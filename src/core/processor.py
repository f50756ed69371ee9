"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for storage,
transport and notifications. The order for one message is:

1) Fast-exit for empty text and announcement banners
2) Content hash; skip if this message id already has a receipt for it
3) Parse the score line
4) Resolve both teams against one registry snapshot
5) Locate the schedule slot
6) Reconcile and write the receipt
7) Acknowledge or guide the author (best effort)
"""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Iterable, Optional

from core.config import LeagueConfig
from core.dedup import compute_content_hash
from core.errors import QuotaExceededError
from core.models import (
    Ambiguous,
    Canonical,
    ChatMessage,
    MessageOutcome,
    ParseError,
    Placeholder,
    ResolvedCandidate,
    TeamRef,
)
from core.parser import LineParser
from core.ports import AuthorIssue, NotifierPort, ReceiptLogPort
from core.reconciler import AMBIGUOUS_ALIAS, Reconciler
from core.registry import Registry, RegistryCache
from core.resolver import SlotResolver

LOGGER = logging.getLogger(__name__)


class MessageProcessor:
    """Orchestrates parsing, resolution, reconciliation and notifications."""

    def __init__(
        self,
        league: LeagueConfig,
        registry_cache: RegistryCache,
        resolver: SlotResolver,
        reconciler: Reconciler,
        receipts: ReceiptLogPort,
        notifier: NotifierPort,
    ) -> None:
        self._league = league
        self._registry_cache = registry_cache
        self._parser = LineParser(league.divisions)
        self._resolver = resolver
        self._reconciler = reconciler
        self._receipts = receipts
        self._notifier = notifier
        self._banner_patterns = [re.compile(pattern, re.IGNORECASE) for pattern in league.banner_patterns]
        self._bot_authors = set(league.bot_author_ids)
        self.quota_signal: Optional[QuotaExceededError] = None

    @property
    def force_reparse(self) -> bool:
        return self._reconciler.force_reparse

    def is_banner(self, message: ChatMessage) -> bool:
        if message.author_id in self._bot_authors:
            return True
        return any(pattern.search(message.text) for pattern in self._banner_patterns)

    async def handle(self, message: ChatMessage) -> MessageOutcome:
        """Process one message through the core pipeline."""

        if not message.text.strip():
            return MessageOutcome("skip_empty")

        if self.is_banner(message):
            return MessageOutcome("skip_banner")

        content_hash = compute_content_hash(message.text)
        if not self.force_reparse:
            previous = self._receipts.latest_for_message(message.source_key, message.message_id)
            if previous is not None and previous.content_hash == content_hash:
                LOGGER.debug("Message %s unchanged since last receipt", message.message_id)
                return MessageOutcome("skip_same_hash")

        # One snapshot per message: a reload between messages is fine, but a
        # single resolution must not see two registry versions.
        registry = self._registry_cache.ensure_current()

        parsed = self._parser.parse(message.text, registry)
        if isinstance(parsed, ParseError):
            LOGGER.info("Message %s not parsed (%s)", message.message_id, parsed.reason)
            return MessageOutcome(f"parse_{parsed.reason}")

        division_hint = registry.canonical_division(parsed.division_hint)
        team_a = registry.resolve_team(parsed.left.team)
        team_b = registry.resolve_team(parsed.right.team)
        candidate = ResolvedCandidate(parsed=parsed, team_a=team_a, team_b=team_b)

        ambiguous = [ref for ref in (team_a, team_b) if isinstance(ref, Ambiguous)]
        if ambiguous:
            LOGGER.info(
                "Message %s uses ambiguous alias(es) %s",
                message.message_id,
                ", ".join(ref.name for ref in ambiguous),
            )
            candidates = tuple(name for ref in ambiguous for name in ref.candidates)
            await self._guide(
                message,
                AuthorIssue(
                    kind=AMBIGUOUS_ALIAS,
                    map_token=parsed.map_token,
                    teams=tuple(ref.name for ref in ambiguous),
                    division=division_hint,
                    candidates=candidates,
                ),
            )
            return MessageOutcome(AMBIGUOUS_ALIAS, parsed=True)

        unknown = _unknown_teams((team_a, team_b), registry)
        if unknown:
            LOGGER.info("Message %s names unknown team(s): %s", message.message_id, ", ".join(unknown))
            await self._guide(
                message,
                AuthorIssue(
                    kind="unknown_team",
                    map_token=parsed.map_token,
                    teams=tuple(unknown),
                    division=division_hint,
                ),
            )
            return MessageOutcome("unknown_team", parsed=True)

        target = self._resolver.resolve(parsed.map_token, team_a.name, team_b.name, division_hint)
        if target is None:
            LOGGER.info(
                "No slot for %s %s vs %s (hint=%s, message %s)",
                parsed.map_token,
                team_a.name,
                team_b.name,
                division_hint,
                message.message_id,
            )
            await self._guide(
                message,
                AuthorIssue(
                    kind="no_slot",
                    map_token=parsed.map_token,
                    teams=(team_a.name, team_b.name),
                    division=division_hint,
                ),
            )
            return MessageOutcome("no_slot", parsed=True)

        result = self._reconciler.apply(target, candidate, message, content_hash, registry)
        if not result.ok:
            LOGGER.info("Message %s rejected for %s/%s: %s", message.message_id, target.division, target.row, result.reason)
            return MessageOutcome(result.reason or "rejected", parsed=True, result=result)

        await self._best_effort(self._notifier.acknowledge(message, result), "acknowledge")
        status = "no_change" if result.no_change else "applied"
        return MessageOutcome(status, parsed=True, result=result)

    async def _guide(self, message: ChatMessage, issue: AuthorIssue) -> None:
        await self._best_effort(self._notifier.guide_author(message, issue), f"guide ({issue.kind})")

    async def _best_effort(self, call: Awaitable[None], label: str) -> None:
        """Run a side-channel call; failures are logged and never propagate."""

        try:
            await call
        except QuotaExceededError as exc:
            LOGGER.warning("Quota hit during %s: %s", label, exc)
            self.quota_signal = exc
        except Exception:
            LOGGER.exception("Best-effort %s failed", label)


def _unknown_teams(refs: Iterable[TeamRef], registry: Registry) -> list[str]:
    unknown: list[str] = []
    for ref in refs:
        if isinstance(ref, Placeholder):
            continue
        if isinstance(ref, Canonical) and registry.is_known_team(ref.name):
            continue
        unknown.append(ref.name or "(blank)")
    return unknown
