"""Content hashing used for same-message skip detection (core domain)."""

from __future__ import annotations

import hashlib

from core.text import collapse_whitespace, strip_invisible


def normalize_for_fingerprint(text: str) -> str:
    """Normalize text for deterministic fingerprinting."""

    return collapse_whitespace(strip_invisible(text)).lower()


def compute_content_hash(text: str) -> str:
    """Return the hash stored on receipts for a message's content.

    Whitespace and case changes do not alter the hash, so an edit that only
    reformats the line is still treated as the same content.
    """

    return hashlib.sha256(normalize_for_fingerprint(text).encode("utf-8")).hexdigest()
