"""Score line parser.

Grammar, left to right::

    [Division]: | Division:      optional division prefix
    map_token                    first whitespace-delimited word
    left OP right                OP is the first of > < - :

Each side holds a team name plus either a 1-4 digit score or a forfeit
keyword. The parser is a small hand-written scanner; failures come back as
ParseError values rather than exceptions.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Tuple, Union

from core.models import ParseError, ParsedCandidate, SideParse
from core.registry import Registry
from core.text import collapse_whitespace, strip_decorations, strip_invisible

LOGGER = logging.getLogger(__name__)

OPERATORS = (">", "<", "-", ":")
_FORFEIT_RE = re.compile(r"\b(?:forfeit|ff)\b", re.IGNORECASE)
_SCORE_RE = re.compile(r"(?<!\d)\d{1,4}(?!\d)")
_MAP_CHARS = re.compile(r"[A-Za-z0-9_]+")

ParseOutcome = Union[ParsedCandidate, ParseError]


class LineParser:
    """Turn one chat message into a ParsedCandidate."""

    def __init__(self, divisions: Iterable[str]) -> None:
        self._divisions = {name.lower(): name for name in divisions}

    def parse(self, raw_text: str, registry: Registry) -> ParseOutcome:
        text = collapse_whitespace(strip_invisible(raw_text or ""))
        if not text:
            return ParseError("empty")

        division, text = self._consume_division(text)

        map_word, _, remainder = text.partition(" ")
        if not map_word or not _MAP_CHARS.fullmatch(map_word):
            return ParseError("no_map_token", map_word)
        map_token = registry.resolve_map(map_word)
        if map_token is None:
            return ParseError("unknown_map", map_word)

        split = _split_on_operator(remainder)
        if split is None:
            return ParseError("no_operator", remainder)
        left_text, operator, right_text = split

        left = _parse_side(left_text)
        right = _parse_side(right_text)
        return _resolve_scores(division, map_token, left, right, operator)

    def _consume_division(self, text: str) -> Tuple[Optional[str], str]:
        """Strip a leading ``[Division]:`` or ``Division:`` if it names a division."""

        if text.startswith("["):
            close = text.find("]")
            if close > 1:
                name = text[1:close].strip()
                rest = text[close + 1 :].lstrip()
                if rest.startswith(":"):
                    rest = rest[1:]
                division = self._divisions.get(name.lower())
                if division:
                    return division, rest.strip()
            return None, text

        head, sep, rest = text.partition(":")
        if sep and " " not in head.strip():
            division = self._divisions.get(head.strip().lower())
            if division:
                return division, rest.strip()
        return None, text


def _split_on_operator(text: str) -> Optional[Tuple[str, str, str]]:
    for index, char in enumerate(text):
        if char in OPERATORS:
            return text[:index], char, text[index + 1 :]
    return None


def _parse_side(text: str) -> SideParse:
    cleaned = strip_decorations(text)
    if _FORFEIT_RE.search(cleaned):
        team = collapse_whitespace(_FORFEIT_RE.sub(" ", cleaned))
        return SideParse(team=team, score=None, forfeit=True)

    match = _SCORE_RE.search(cleaned)
    if match is None:
        return SideParse(team=cleaned, score=None, forfeit=False)
    team = collapse_whitespace(cleaned[: match.start()] + " " + cleaned[match.end() :])
    return SideParse(team=team, score=int(match.group()), forfeit=False)


def _resolve_scores(
    division: Optional[str],
    map_token: str,
    left: SideParse,
    right: SideParse,
    operator: str,
) -> ParseOutcome:
    anomalies: list[str] = []

    if left.forfeit and right.forfeit:
        LOGGER.warning("Both sides forfeited on %s (%s vs %s); scoring 0-0", map_token, left.team, right.team)
        score1, score2 = 0, 0
        anomalies.append("double_forfeit")
    elif left.forfeit:
        score1 = 0
        score2 = right.score if right.score is not None else 1
    elif right.forfeit:
        score1 = left.score if left.score is not None else 1
        score2 = 0
    elif left.score is None and right.score is None:
        return ParseError("no_scores")
    elif left.score is None or right.score is None:
        return ParseError("missing_score", left.team if left.score is None else right.team)
    else:
        score1, score2 = left.score, right.score

    if (operator == ">" and score1 <= score2) or (operator == "<" and score1 >= score2):
        LOGGER.info("Operator %r disagrees with scores %s-%s on %s; keeping scores", operator, score1, score2, map_token)
        anomalies.append("operator_mismatch")

    return ParsedCandidate(
        division_hint=division,
        map_token=map_token,
        left=left,
        right=right,
        operator=operator,
        score1=score1,
        score2=score2,
        forfeit=left.forfeit or right.forfeit,
        anomalies=tuple(anomalies),
    )
