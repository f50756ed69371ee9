"""League registry: canonical teams and maps plus their alias tables.

A Registry is an immutable snapshot. RegistryCache owns the current snapshot
and rebuilds it on demand, so one message is always resolved against a
single consistent view even if a reload is requested mid-batch.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Tuple

from core.config import LeagueConfig
from core.models import Ambiguous, Canonical, Placeholder, TeamRef, Unresolved
from core.ports import RegistrySourcePort, StatePort
from core.source_keys import REGISTRY_REVISION_KEY
from core.text import clean_team_token, strip_decorations

LOGGER = logging.getLogger(__name__)


def _strip_article(token: str) -> str:
    if token.startswith("THE "):
        stripped = token[4:].strip()
        if stripped:
            return stripped
    return token


class Registry:
    """Resolve raw team and map text to canonical league names."""

    def __init__(
        self,
        config: LeagueConfig,
        teams_by_division: dict[str, frozenset[str]],
        team_aliases: dict[str, frozenset[str]],
        map_aliases: dict[str, str],
        version: int = 0,
    ) -> None:
        self.config = config
        self.version = version
        self._teams_by_division = teams_by_division
        self._canonical = frozenset().union(*teams_by_division.values()) if teams_by_division else frozenset()
        self._team_aliases = team_aliases
        self._map_aliases = map_aliases
        self._prefix = config.map_prefix.lower()
        self._map_token_re = re.compile(rf"{re.escape(self._prefix)}[a-z0-9_]+")
        division_names = "|".join(re.escape(name.upper()) for name in config.divisions)
        self._placeholder_re = re.compile(rf"(?:{division_names}) [A-Z]") if division_names else None

    @classmethod
    def build(cls, source: RegistrySourcePort, config: LeagueConfig, version: int = 0) -> "Registry":
        """Load the raw tables from the source and compute every alias table."""

        teams_by_division: dict[str, frozenset[str]] = {}
        for division, names in source.load_team_rosters().items():
            canonical_division = _match_division(division, config.divisions)
            if canonical_division is None:
                LOGGER.warning("Roster for unknown division %r ignored", division)
                continue
            cleaned = {clean_team_token(name) for name in names}
            cleaned.discard("")
            teams_by_division[canonical_division] = frozenset(cleaned)

        canonical: set[str] = set()
        for names in teams_by_division.values():
            canonical.update(names)

        team_aliases = _build_team_aliases(canonical, source.load_team_aliases())
        map_aliases = _build_map_aliases(
            config.map_prefix.lower(),
            division_maps=[token for tokens in source.load_schedule_maps().values() for token in tokens],
            overrides=source.load_map_aliases(),
            fallback=config.fallback_maps,
        )
        LOGGER.info(
            "Registry v%s built: %s teams, %s team aliases, %s map aliases",
            version,
            len(canonical),
            len(team_aliases),
            len(map_aliases),
        )
        return cls(config, teams_by_division, team_aliases, map_aliases, version=version)

    # Teams -------------------------------------------------------------

    def is_placeholder(self, name: str) -> bool:
        if self._placeholder_re is None:
            return False
        return bool(self._placeholder_re.fullmatch(clean_team_token(name)))

    def is_known_team(self, name: str) -> bool:
        return name in self._canonical

    def division_of(self, name: str) -> Optional[str]:
        for division in self.config.divisions:
            if name in self._teams_by_division.get(division, ()):
                return division
        return None

    def resolve_team(self, raw: str) -> TeamRef:
        """Map raw team text to a canonical name or an explicit sentinel."""

        cleaned = clean_team_token(raw)
        if not cleaned:
            return Unresolved("")
        if self.is_placeholder(cleaned):
            return Placeholder(cleaned)

        stripped = _strip_article(cleaned)
        for token in (cleaned, stripped):
            if token in self._canonical:
                return Canonical(token)

        hits = self._team_aliases.get(stripped) or self._team_aliases.get(cleaned) or frozenset()
        if len(hits) == 1:
            return Canonical(next(iter(hits)))
        if len(hits) > 1:
            return Ambiguous(stripped, tuple(sorted(hits)))
        return Unresolved(cleaned)

    # Maps --------------------------------------------------------------

    def resolve_map(self, raw: str) -> Optional[str]:
        token = strip_decorations(raw).lower()
        if not token:
            return None
        body = token[len(self._prefix):] if token.startswith(self._prefix) else token
        for key in (token, body, f"{self._prefix}{body}"):
            hit = self._map_aliases.get(key)
            if hit:
                return hit
        if self.config.allow_unknown_maps and self._map_token_re.fullmatch(token):
            LOGGER.info("Accepting provisional map token %s", token)
            return token
        return None

    # Divisions ---------------------------------------------------------

    def canonical_division(self, hint: Optional[str]) -> Optional[str]:
        if not hint:
            return None
        return _match_division(hint, self.config.divisions)


def _match_division(name: str, divisions: Iterable[str]) -> Optional[str]:
    wanted = name.strip().lower()
    for division in divisions:
        if division.lower() == wanted:
            return division
    return None


def _build_team_aliases(
    canonical: set[str], aliases: Iterable[Tuple[str, str]]
) -> dict[str, frozenset[str]]:
    table: dict[str, set[str]] = {}

    # Every canonical name is reachable without its leading article.
    for name in canonical:
        stripped = _strip_article(name)
        if stripped != name:
            table.setdefault(stripped, set()).add(name)

    for raw_alias, raw_target in aliases:
        alias = _strip_article(clean_team_token(raw_alias))
        target = clean_team_token(raw_target)
        if not alias or not target:
            continue
        if target not in canonical:
            LOGGER.warning("Team alias %r points at unknown team %r", raw_alias, raw_target)
            continue
        table.setdefault(alias, set()).add(target)

    ambiguous = sorted(alias for alias, targets in table.items() if len(targets) > 1)
    if ambiguous:
        LOGGER.warning("Ambiguous team aliases: %s", ", ".join(ambiguous))
    return {alias: frozenset(targets) for alias, targets in table.items()}


def _build_map_aliases(
    prefix: str,
    division_maps: Iterable[str],
    overrides: Iterable[Tuple[str, str]],
    fallback: Iterable[str],
) -> dict[str, str]:
    """Build alias -> canonical map token.

    Layers are applied from highest to lowest precedence with setdefault:
    division schedule headers, then admin overrides, then the global list.
    Short aliases of suffixed tokens (``caen`` for ``dod_caen_b1``) come last
    so they never shadow a real base token.
    """

    def canonical_token(raw: str) -> str:
        token = strip_decorations(raw).lower()
        if token and not token.startswith(prefix):
            token = f"{prefix}{token}"
        return token

    table: dict[str, str] = {}
    all_tokens: list[str] = []

    def register(alias: str, token: str) -> None:
        table.setdefault(alias, token)
        if alias.startswith(prefix):
            table.setdefault(alias[len(prefix):], token)

    for raw in division_maps:
        token = canonical_token(raw)
        if token:
            register(token, token)
            all_tokens.append(token)

    for raw_alias, raw_target in overrides:
        alias = strip_decorations(raw_alias).lower()
        token = canonical_token(raw_target)
        if alias and token:
            register(alias, token)
            register(token, token)
            all_tokens.append(token)

    for raw in fallback:
        token = canonical_token(raw)
        if token:
            register(token, token)
            all_tokens.append(token)

    for token in all_tokens:
        body = token[len(prefix):]
        if "_" not in body:
            continue
        base = body.split("_", 1)[0]
        if base:
            table.setdefault(base, token)
    return table


class RegistryCache:
    """Own the current Registry snapshot with an explicit rebuild contract."""

    def __init__(
        self,
        source: RegistrySourcePort,
        config: LeagueConfig,
        state: Optional[StatePort] = None,
    ) -> None:
        self._source = source
        self._config = config
        self._state = state
        self._snapshot: Optional[Registry] = None
        self._version = 0
        self._seen_revision: Optional[str] = None

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> Registry:
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.reload()
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    def reload(self) -> Registry:
        """Build a fresh snapshot and swap it in as a single assignment."""

        self._version += 1
        snapshot = Registry.build(self._source, self._config, version=self._version)
        self._snapshot = snapshot
        if self._state is not None:
            self._seen_revision = self._state.get_state(REGISTRY_REVISION_KEY)
        return snapshot

    def ensure_current(self) -> Registry:
        """Rebuild if an operator requested a reload since the last build."""

        if self._state is not None and self._snapshot is not None:
            revision = self._state.get_state(REGISTRY_REVISION_KEY)
            if revision != self._seen_revision:
                LOGGER.info("Registry revision changed (%s -> %s); reloading", self._seen_revision, revision)
                return self.reload()
        return self.get()


def request_reload(state: StatePort) -> int:
    """Bump the persisted registry revision so running loops rebuild caches."""

    raw = state.get_state(REGISTRY_REVISION_KEY)
    revision = int(raw) + 1 if raw else 1
    state.set_state(REGISTRY_REVISION_KEY, str(revision))
    return revision
