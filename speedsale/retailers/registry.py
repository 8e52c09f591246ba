"""Registry of retailer profiles, built from code plus configuration overrides."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from speedsale.retailers import sportsshoes
from speedsale.retailers.profiles import RetailerProfile

BUILTIN_PROFILES: tuple[RetailerProfile, ...] = (sportsshoes.PROFILE,)


class RetailerRegistry:
    """Explicit lookup table of retailer profiles, passed to the orchestrator."""

    def __init__(self, profiles: Iterable[RetailerProfile]) -> None:
        self._profiles: dict[str, RetailerProfile] = {}
        for profile in profiles:
            if profile.id in self._profiles:
                raise ValueError(f"Duplicate retailer profile id: {profile.id}")
            self._profiles[profile.id] = profile

    def get(self, retailer_id: str) -> RetailerProfile | None:
        return self._profiles.get(retailer_id)

    def enabled(self) -> list[RetailerProfile]:
        return [profile for profile in self._profiles.values() if profile.enabled]

    def __iter__(self) -> Iterator[RetailerProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)


def build_registry(
    config: dict[str, Any] | None = None,
    profiles: Iterable[RetailerProfile] = BUILTIN_PROFILES,
) -> RetailerRegistry:
    """Apply ``retailers.<id>`` overrides from *config* to *profiles*."""

    overrides = (config or {}).get("retailers") or {}
    return RetailerRegistry(
        profile.with_overrides(overrides.get(profile.id)) for profile in profiles
    )
