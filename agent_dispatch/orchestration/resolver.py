from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Mapping, Sequence, Union

from ..core.config import ProviderSettings
from ..core.exceptions import ProviderResolutionError
from ..core.logging import get_logger
from ..core.metrics import record_provider_resolution
from .enums import ResolutionOutcome

logger = get_logger(name=__name__)

ProviderSpec = Union[str, Sequence[str], None]
AvailabilityProbe = Callable[[str], Union[bool, Awaitable[bool]]]

DEFAULT_FALLBACK_ORDER: tuple[str, ...] = ("claude", "gemini", "copilot")


@dataclass(slots=True, frozen=True)
class ResolvedProvider:
    name: str
    default_model: str | None = None
    is_fallback: bool = False
    tried: tuple[str, ...] = ()


def candidate_order(spec: ProviderSpec, fallback_order: Sequence[str]) -> list[str]:
    """Build the ordered list of providers to probe for ``spec``.

    A single name is tried first and followed by the fallback order without it. An explicit
    list is used verbatim. A missing spec falls back to ``fallback_order`` as is.
    """
    fallback = [name.strip() for name in fallback_order if name and name.strip()]
    if isinstance(spec, str):
        name = spec.strip()
        if not name:
            return _dedupe(fallback)
        return _dedupe([name, *(candidate for candidate in fallback if candidate != name)])
    if spec is None:
        return _dedupe(fallback)
    return _dedupe(name.strip() for name in spec if name and name.strip())


def _dedupe(names: Iterable[str]) -> list[str]:
    ordered: list[str] = []
    for name in names:
        if name not in ordered:
            ordered.append(name)
    return ordered


class ProviderResolver:
    """Pick the first available provider for an agent's provider spec.

    Probes run one at a time in candidate order, exactly once per candidate per call.
    """

    def __init__(
        self,
        *,
        probe: AvailabilityProbe | None = None,
        fallback_order: Sequence[str] = DEFAULT_FALLBACK_ORDER,
        default_models: Mapping[str, str] | None = None,
    ) -> None:
        self._probe = probe
        self._fallback_order = tuple(fallback_order)
        self._default_models = dict(default_models or {})

    @classmethod
    def from_settings(cls, settings: ProviderSettings, *, probe: AvailabilityProbe | None = None) -> "ProviderResolver":
        return cls(
            probe=probe,
            fallback_order=settings.fallback_order,
            default_models=settings.default_models,
        )

    @property
    def fallback_order(self) -> tuple[str, ...]:
        return self._fallback_order

    async def resolve(
        self,
        spec: ProviderSpec,
        probe: AvailabilityProbe | None = None,
        fallback_order: Sequence[str] | None = None,
    ) -> ResolvedProvider:
        active_probe = probe or self._probe
        if active_probe is None:
            raise ValueError("ProviderResolver.resolve requires an availability probe")
        order = fallback_order if fallback_order is not None else self._fallback_order
        candidates = candidate_order(spec, order)

        tried: list[str] = []
        for position, candidate in enumerate(candidates):
            available = await self._check(active_probe, candidate)
            if available:
                is_fallback = position > 0
                if is_fallback:
                    logger.info(
                        "provider_fallback_selected",
                        provider=candidate,
                        unavailable=list(tried),
                    )
                record_provider_resolution(
                    outcome=(ResolutionOutcome.FALLBACK if is_fallback else ResolutionOutcome.PRIMARY).value
                )
                return ResolvedProvider(
                    name=candidate,
                    default_model=self._default_models.get(candidate),
                    is_fallback=is_fallback,
                    tried=tuple(tried),
                )
            tried.append(candidate)

        record_provider_resolution(outcome=ResolutionOutcome.UNAVAILABLE.value)
        logger.warning("provider_resolution_failed", tried=list(tried))
        raise ProviderResolutionError(tried)

    async def _check(self, probe: AvailabilityProbe, candidate: str) -> bool:
        try:
            outcome = probe(candidate)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:  # noqa: BLE001
            logger.warning("provider_probe_failed", provider=candidate, error=str(exc))
            return False
        return bool(outcome)


__all__ = [
    "AvailabilityProbe",
    "DEFAULT_FALLBACK_ORDER",
    "ProviderResolver",
    "ProviderSpec",
    "ResolvedProvider",
    "candidate_order",
]
