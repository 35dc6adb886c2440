from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, TypeAdapter, ValidationError

from ..core.exceptions import PermissionValidationError

LEGACY_FIELDS = ("capabilities", "sub_services", "subServices", "mcp_servers")
MODERN_FIELDS = ("modes", "options")
STANDARD_MODES = ("query", "execute")


class ModeEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    capabilities: list[StrictStr] | None = None
    sub_services: list[StrictStr] | None = Field(default=None, alias="subServices")


class ModernPermissionConfig(BaseModel):
    """Per-mode permission map, e.g. ``{"modes": {"query": {"capabilities": [...]}}}``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["modern"] = "modern"
    modes: dict[str, ModeEntry | None] = Field(default_factory=dict)


class LegacyPermissionConfig(BaseModel):
    """Deprecated flat shape. Every entry applies to ``legacy_mode``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    kind: Literal["legacy"] = "legacy"
    capabilities: list[StrictStr] | None = None
    sub_services: list[StrictStr] | None = Field(default=None, alias="subServices")
    mcp_servers: list[StrictStr] | None = None
    legacy_mode: str = "execute"

    def effective_sub_services(self) -> list[str]:
        if self.sub_services is not None:
            return list(self.sub_services)
        return list(self.mcp_servers or [])


PermissionConfig = Annotated[
    Union[LegacyPermissionConfig, ModernPermissionConfig],
    Field(discriminator="kind"),
]

_CONFIG_ADAPTER: TypeAdapter[Any] = TypeAdapter(PermissionConfig)


def load_permission_configs(
    raw: Mapping[str, Any] | None,
    *,
    legacy_mode: str = "execute",
) -> list[LegacyPermissionConfig | ModernPermissionConfig]:
    """Classify a raw provider configuration into its legacy and modern parts.

    A configuration may carry both shapes at once, in which case both parts are returned.
    Modern entries are read from the ``modes``/``options`` wrapper and from top-level ``query``
    and ``execute`` keys. Keys unrelated to permissions are ignored.
    """
    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        raise PermissionValidationError(
            f"Provider configuration must be a mapping, got {type(raw).__name__}"
        )

    payloads: list[dict[str, Any]] = []

    legacy = {key: raw[key] for key in LEGACY_FIELDS if raw.get(key) is not None}
    if legacy:
        payloads.append({"kind": "legacy", "legacy_mode": legacy_mode, **legacy})

    modes = next((raw[key] for key in MODERN_FIELDS if raw.get(key) is not None), None)
    if modes is not None:
        if not isinstance(modes, Mapping):
            raise PermissionValidationError(
                f"Permission modes must be a mapping of mode name to entry, got {type(modes).__name__}"
            )
        payloads.append({"kind": "modern", "modes": dict(modes)})

    top_level = {key: raw[key] for key in STANDARD_MODES if raw.get(key) is not None}
    if top_level:
        payloads.append({"kind": "modern", "modes": top_level})

    configs: list[LegacyPermissionConfig | ModernPermissionConfig] = []
    for payload in payloads:
        try:
            configs.append(_CONFIG_ADAPTER.validate_python(payload))
        except ValidationError as exc:
            raise PermissionValidationError(f"Invalid {payload['kind']} permission configuration: {exc}") from exc
    return configs


__all__ = [
    "LegacyPermissionConfig",
    "ModeEntry",
    "ModernPermissionConfig",
    "PermissionConfig",
    "load_permission_configs",
]
