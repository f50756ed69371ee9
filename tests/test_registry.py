from __future__ import annotations

from typing import Optional

from core.config import LeagueConfig
from core.models import Ambiguous, Canonical, Placeholder, Unresolved
from core.registry import Registry, RegistryCache, request_reload


class FakeSource:
    def __init__(self) -> None:
        self.rosters = {
            "Gold": ["Wickeds", "Avengers", "The Ravens"],
            "silver": ["Hawks", "Panthers"],
        }
        self.team_aliases = [("wicks", "Wickeds"), ("birds", "The Ravens"), ("birds", "Hawks"), ("ghost", "Nobody")]
        self.map_aliases = [("len", "dod_lennon2"), ("caen", "dod_caen_b1")]
        self.schedule_maps = {"Gold": ["dod_caen", "dod_caen_b1", "dod_lennon2"]}
        self.roster_loads = 0

    def load_team_rosters(self):
        self.roster_loads += 1
        return self.rosters

    def load_team_aliases(self):
        return self.team_aliases

    def load_map_aliases(self):
        return self.map_aliases

    def load_schedule_maps(self):
        return self.schedule_maps


class FakeState:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    def get_state(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set_state(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete_state(self, key: str) -> None:
        self.values.pop(key, None)


def _config(allow_unknown_maps: bool = False) -> LeagueConfig:
    return LeagueConfig(
        divisions=("Gold", "Silver"),
        fallback_maps=("dod_flash", "dod_anzio_b2"),
        allow_unknown_maps=allow_unknown_maps,
    )


def _registry(allow_unknown_maps: bool = False) -> Registry:
    return Registry.build(FakeSource(), _config(allow_unknown_maps))


def test_exact_name_ignores_case_and_decoration() -> None:
    registry = _registry()
    assert registry.resolve_team("wickeds") == Canonical("WICKEDS")
    assert registry.resolve_team("\U0001F525 **Wickeds** \U0001F525") == Canonical("WICKEDS")
    assert registry.resolve_team("The\u00a0Ravens") == Canonical("THE RAVENS")


def test_leading_article_is_optional() -> None:
    registry = _registry()
    assert registry.resolve_team("Ravens") == Canonical("THE RAVENS")
    assert registry.resolve_team("the ravens") == Canonical("THE RAVENS")
    assert registry.resolve_team("The Wickeds") == Canonical("WICKEDS")
    assert registry.resolve_team("The") == Unresolved("THE")


def test_placeholder_names_are_flagged() -> None:
    registry = _registry()
    assert registry.resolve_team("Gold  a") == Placeholder("GOLD A")
    assert registry.is_placeholder("silver B")
    assert not registry.is_placeholder("GOLD AA")


def test_alias_resolution_and_ambiguity() -> None:
    registry = _registry()
    assert registry.resolve_team("Wicks") == Canonical("WICKEDS")
    assert registry.resolve_team("birds") == Ambiguous("BIRDS", ("HAWKS", "THE RAVENS"))
    # Aliases that point at teams outside every roster are dropped.
    assert registry.resolve_team("ghost") == Unresolved("GHOST")


def test_rosters_are_matched_to_configured_divisions() -> None:
    registry = _registry()
    assert registry.division_of("HAWKS") == "Silver"
    assert registry.canonical_division("gold") == "Gold"
    assert registry.canonical_division("platinum") is None


def test_map_precedence_and_base_token_preference() -> None:
    registry = _registry()
    assert registry.resolve_map("DOD_LENNON2") == "dod_lennon2"
    assert registry.resolve_map("lennon2") == "dod_lennon2"
    assert registry.resolve_map("len") == "dod_lennon2"
    # Schedule-derived dod_caen beats the admin override for "caen".
    assert registry.resolve_map("caen") == "dod_caen"
    assert registry.resolve_map("caen_b1") == "dod_caen_b1"
    # Only a suffixed variant exists, so the short alias points at it.
    assert registry.resolve_map("anzio") == "dod_anzio_b2"
    assert registry.resolve_map("flash") == "dod_flash"


def test_unknown_maps_follow_configuration() -> None:
    assert _registry().resolve_map("dod_unknown") is None
    permissive = _registry(allow_unknown_maps=True)
    assert permissive.resolve_map("dod_unknown") == "dod_unknown"
    assert permissive.resolve_map("unknown") is None
    assert permissive.resolve_map("dod_bad-name") is None


def test_cache_builds_once_and_reloads_on_request() -> None:
    source = FakeSource()
    state = FakeState()
    cache = RegistryCache(source, _config(), state=state)

    first = cache.get()
    assert cache.get() is first
    assert cache.ensure_current() is first
    assert source.roster_loads == 1

    source.rosters["Gold"].append("Iron Wolves")
    request_reload(state)
    second = cache.ensure_current()
    assert second is not first
    assert second.version == first.version + 1
    assert second.resolve_team("iron wolves") == Canonical("IRON WOLVES")
    # The old snapshot is untouched.
    assert first.resolve_team("iron wolves") == Unresolved("IRON WOLVES")

    cache.invalidate()
    assert cache.get().version == second.version + 1
