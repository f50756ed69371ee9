"""Shared text for replies, author guidance and run summaries.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

from typing import Optional

from core.models import ApplyResult, RunSummary
from core.ports import AuthorIssue


def _score(value: Optional[int]) -> str:
    return "-" if value is None else str(value)


def format_edit_reply(result: ApplyResult) -> str:
    """Return the "was X, now Y" reply posted after an edited result."""

    receipt = result.receipt
    if receipt is None:
        raise ValueError("Edit reply needs the written receipt")
    was1, was2 = result.prior_scores
    return (
        f"Updated {receipt.division} {receipt.map_token}: "
        f"{receipt.team1} {_score(receipt.score1)}-{_score(receipt.score2)} {receipt.team2} "
        f"(was {_score(was1)}-{_score(was2)})"
    )


def format_guidance(issue: AuthorIssue, original_text: str, map_prefix: str) -> str:
    """Explain to the author why their result was not recorded."""

    quoted = original_text.strip().splitlines()[0] if original_text.strip() else ""
    lines = [f"Your result was not recorded: \"{quoted}\"", ""]

    if issue.kind == "unknown_team":
        names = ", ".join(issue.teams)
        lines.append(f"I don't recognise the team name(s): {names}.")
        lines.append("Please use the exact team names from the schedule.")
    elif issue.kind == "ambiguous_alias":
        names = ", ".join(issue.teams)
        lines.append(f"The name(s) {names} match more than one team.")
        if issue.candidates:
            lines.append("Did you mean one of: " + ", ".join(issue.candidates) + "?")
        lines.append("Please repost using the full team name.")
    elif issue.kind == "no_slot":
        teams = " vs ".join(issue.teams)
        where = f" in {issue.division}" if issue.division else ""
        lines.append(f"I couldn't find {teams} scheduled on {issue.map_token}{where}.")
        lines.append("Check the map and that both teams are the ones scheduled for this week.")
    else:
        lines.append(f"Reason: {issue.kind}.")

    lines.extend(
        [
            "",
            "Format: [Division]: " + map_prefix + "map TeamA 5 > 3 TeamB",
            f"Map tokens start with {map_prefix} and contain only letters, digits and underscores.",
        ]
    )
    return "\n".join(lines)


def format_summary_line(summary: RunSummary) -> str:
    """One-line run summary for logs."""

    skipped = ", ".join(f"{reason}={count}" for reason, count in sorted(summary.skipped.items()))
    parts = [
        f"source={summary.source_key}",
        f"seen={summary.seen}",
        f"parsed={summary.parsed}",
        f"applied={summary.applied}",
        f"new={summary.new}",
        f"edits={summary.edits}",
        f"no_change={summary.no_change}",
        f"errors={summary.errors}",
        f"skipped=[{skipped}]",
        f"cursor={summary.cursor_before}->{summary.cursor_after}",
    ]
    if summary.stopped_early:
        parts.append(f"stopped={summary.stopped_early}")
    if summary.cooldown:
        parts.append("cooldown")
    return " ".join(parts)
