"""Helpers for working with source keys and their persisted state keys."""

from __future__ import annotations

CURSOR_PREFIX = "cursor:"
COOLDOWN_PREFIX = "cooldown:"
INVOCATIONS_PREFIX = "invocations:"
REGISTRY_REVISION_KEY = "registry:revision"

# Older deployments stored the watermark under these names.
LEGACY_CURSOR_PREFIXES = ("last_id:", "")


def cursor_key(source_key: str) -> str:
    return f"{CURSOR_PREFIX}{source_key}"


def cooldown_key(source_key: str) -> str:
    return f"{COOLDOWN_PREFIX}{source_key}"


def invocations_key(source_key: str) -> str:
    return f"{INVOCATIONS_PREFIX}{source_key}"


def _expand_chat_id_variants(raw_chat_id: int) -> set[int]:
    """Return equivalent chat id variants (peer id, chat id, channel id)."""

    variants: set[int] = {raw_chat_id}
    if raw_chat_id < 0:
        raw_text = str(raw_chat_id)
        if raw_text.startswith("-100"):
            # Channel/supergroup peer id: -100<channel_id>
            channel_part = raw_text[4:]
            if channel_part.isdigit():
                variants.add(int(channel_part))
        else:
            variants.add(abs(raw_chat_id))
        return variants

    # raw_chat_id is positive: add PeerChat and PeerChannel-style ids.
    variants.add(-raw_chat_id)
    variants.add(-1000000000000 - raw_chat_id)
    return variants


def expand_source_key_variants(source_key: str) -> set[str]:
    """Expand a source key to include equivalent chat_id variants."""

    if source_key.startswith("@") or not source_key.startswith("chat_id:"):
        return {source_key}

    try:
        raw_chat_id = int(source_key.split("chat_id:", 1)[1])
    except ValueError:
        return {source_key}

    return {f"chat_id:{variant}" for variant in _expand_chat_id_variants(raw_chat_id)}


def legacy_cursor_keys(source_key: str) -> list[str]:
    """Return keys an older release may have used for this source's cursor.

    The exact source key is tried first, then its chat_id variants, so a
    config that switched between ``chat_id:123`` and ``chat_id:-100123``
    keeps its watermark.
    """

    variants = [source_key] + sorted(expand_source_key_variants(source_key) - {source_key})
    keys: list[str] = []
    for prefix in LEGACY_CURSOR_PREFIXES:
        for variant in variants:
            keys.append(f"{prefix}{variant}")
    return keys
