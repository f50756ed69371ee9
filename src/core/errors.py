"""Transport-level exceptions shared by the core and adapters.

Parse and reconciliation failures are returned as values; only transport
problems are raised, because they are the only failures that may abort a
poll invocation.
"""

from __future__ import annotations

from typing import Optional


class TransportError(RuntimeError):
    """A network or protocol failure reported by the chat transport."""


class QuotaExceededError(TransportError):
    """The transport asked us to back off for a while."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
