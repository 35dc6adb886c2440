from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from ..core.exceptions import PermissionValidationError
from ..schemas.permissions import LegacyPermissionConfig, ModernPermissionConfig, load_permission_configs

STANDARD_MODES: tuple[str, ...] = ("query", "execute")


def _clean(values: Iterable[str] | None) -> frozenset[str]:
    if not values:
        return frozenset()
    cleaned: set[str] = set()
    for value in values:
        if not isinstance(value, str):
            raise PermissionValidationError(f"Permission entries must be strings, got {type(value).__name__}")
        value = value.strip()
        if value:
            cleaned.add(value)
    return frozenset(cleaned)


@dataclass(slots=True, frozen=True)
class ModePermissions:
    capabilities: frozenset[str] = field(default_factory=frozenset)
    sub_services: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, capabilities: Iterable[str] | None = None, sub_services: Iterable[str] | None = None) -> "ModePermissions":
        return cls(capabilities=_clean(capabilities), sub_services=_clean(sub_services))

    def merge(self, other: "ModePermissions") -> "ModePermissions":
        return ModePermissions(
            capabilities=self.capabilities | other.capabilities,
            sub_services=self.sub_services | other.sub_services,
        )

    @property
    def is_empty(self) -> bool:
        return not self.capabilities and not self.sub_services

    def to_config(self) -> dict[str, list[str]]:
        return {
            "capabilities": sorted(self.capabilities),
            "sub_services": sorted(self.sub_services),
        }


EMPTY_PERMISSIONS = ModePermissions()


class PermissionTable(Mapping[str, ModePermissions]):
    """Immutable mode -> permissions mapping that always holds the standard modes."""

    __slots__ = ("_modes",)

    def __init__(self, modes: Mapping[str, ModePermissions] | None = None) -> None:
        table: dict[str, ModePermissions] = {mode: EMPTY_PERMISSIONS for mode in STANDARD_MODES}
        for mode, permissions in (modes or {}).items():
            table[mode] = table.get(mode, EMPTY_PERMISSIONS).merge(permissions)
        self._modes = table

    def __getitem__(self, mode: str) -> ModePermissions:
        return self._modes[mode]

    def __iter__(self) -> Iterator[str]:
        return iter(self._modes)

    def __len__(self) -> int:
        return len(self._modes)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PermissionTable):
            return self._modes == other._modes
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._modes.items()))

    def __repr__(self) -> str:
        return f"PermissionTable({self._modes!r})"

    def to_config(self) -> dict[str, Any]:
        """Render the table back into the modern raw configuration shape."""
        return {"modes": {mode: permissions.to_config() for mode, permissions in self._modes.items()}}


@dataclass(slots=True, frozen=True)
class NormalizedPermissions:
    canonical: PermissionTable
    by_mode: dict[str, ModePermissions]

    @classmethod
    def from_table(cls, table: PermissionTable) -> "NormalizedPermissions":
        return cls(canonical=table, by_mode=dict(table))

    def for_mode(self, mode: str) -> ModePermissions:
        return self.canonical.get(mode, EMPTY_PERMISSIONS)


class PermissionNormalizer:
    """Fold legacy and modern provider permission settings into one canonical table.

    Legacy top-level fields apply to ``legacy_mode`` (``execute`` by default). When both shapes
    are present the result is the per-mode union, so declaration order never changes the
    outcome. Normalizing an already normalized table returns an equal table.
    """

    def __init__(self, *, legacy_mode: str = "execute") -> None:
        self._legacy_mode = legacy_mode

    def normalize(
        self,
        raw: Mapping[str, Any] | PermissionTable | NormalizedPermissions | None,
    ) -> NormalizedPermissions:
        if isinstance(raw, NormalizedPermissions):
            return NormalizedPermissions.from_table(raw.canonical)
        if isinstance(raw, PermissionTable):
            return NormalizedPermissions.from_table(raw)

        merged: dict[str, ModePermissions] = {}

        def add(mode: str, permissions: ModePermissions) -> None:
            merged[mode] = merged.get(mode, EMPTY_PERMISSIONS).merge(permissions)

        for config in load_permission_configs(raw, legacy_mode=self._legacy_mode):
            if isinstance(config, LegacyPermissionConfig):
                add(
                    config.legacy_mode,
                    ModePermissions.of(config.capabilities, config.effective_sub_services()),
                )
            elif isinstance(config, ModernPermissionConfig):
                for mode, entry in config.modes.items():
                    if entry is None:
                        add(mode, EMPTY_PERMISSIONS)
                        continue
                    add(mode, ModePermissions.of(entry.capabilities, entry.sub_services))

        return NormalizedPermissions.from_table(PermissionTable(merged))


def normalize_permissions(
    raw: Mapping[str, Any] | PermissionTable | NormalizedPermissions | None,
    *,
    legacy_mode: str = "execute",
) -> NormalizedPermissions:
    return PermissionNormalizer(legacy_mode=legacy_mode).normalize(raw)


__all__ = [
    "EMPTY_PERMISSIONS",
    "ModePermissions",
    "NormalizedPermissions",
    "PermissionNormalizer",
    "PermissionTable",
    "STANDARD_MODES",
    "normalize_permissions",
]
