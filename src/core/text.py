"""Text cleanup shared by the registry and the line parser."""

from __future__ import annotations

import re
import unicodedata

# Zero-width characters, BOM, word joiner and the various non-breaking spaces.
_INVISIBLE = dict.fromkeys(
    map(ord, "\u200b\u200c\u200d\u2060\ufeff\u00a0\u2007\u202f\u3000"), " "
)
# Markdown decoration that chat clients leave in raw text.
_MARKUP_RE = re.compile(r"[*~`|]+")
_DECORATIVE_CATEGORIES = {"So", "Sk", "Cs", "Co", "Cn", "Cf", "Mn", "Me"}


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def strip_invisible(text: str) -> str:
    """Replace invisible whitespace with a plain space."""

    return text.translate(_INVISIBLE)


def strip_decorations(text: str) -> str:
    """Drop emoji, symbols, combining marks and markdown glyphs."""

    text = strip_invisible(text)
    kept = [ch for ch in text if unicodedata.category(ch) not in _DECORATIVE_CATEGORIES]
    return collapse_whitespace(_MARKUP_RE.sub(" ", "".join(kept)))


def clean_team_token(raw: str) -> str:
    """Normalize a team name as typed into the registry's uppercase form."""

    return strip_decorations(raw).upper().strip(" .,;!?'\"()[]{}")
