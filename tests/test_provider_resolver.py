from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from agent_dispatch.core.config import ProviderSettings
from agent_dispatch.core.exceptions import ProviderResolutionError
from agent_dispatch.orchestration.resolver import ProviderResolver, candidate_order
from tests.helpers.stubs import AsyncStubProbe, StubProbe

FALLBACK = ("claude", "gemini", "copilot")


def test_candidate_order_for_single_name_appends_fallbacks() -> None:
    assert candidate_order("gemini", FALLBACK) == ["gemini", "claude", "copilot"]


def test_candidate_order_uses_explicit_list_verbatim() -> None:
    assert candidate_order(["copilot", "x"], FALLBACK) == ["copilot", "x"]


def test_candidate_order_without_spec_uses_fallback() -> None:
    assert candidate_order(None, FALLBACK) == ["claude", "gemini", "copilot"]
    assert candidate_order("  ", FALLBACK) == ["claude", "gemini", "copilot"]


@pytest.mark.asyncio
async def test_first_available_candidate_is_primary() -> None:
    probe = StubProbe({"claude": True, "gemini": True})
    resolver = ProviderResolver(fallback_order=FALLBACK, default_models={"claude": "sonnet"})

    resolved = await resolver.resolve("claude", probe)

    assert resolved.name == "claude"
    assert resolved.is_fallback is False
    assert resolved.default_model == "sonnet"
    assert probe.calls == ["claude"]


@pytest.mark.asyncio
async def test_later_candidate_is_flagged_as_fallback() -> None:
    probe = StubProbe({"x": False, "y": True})
    resolver = ProviderResolver(fallback_order=FALLBACK)

    resolved = await resolver.resolve(["x", "y"], probe)

    assert resolved.name == "y"
    assert resolved.is_fallback is True
    assert resolved.tried == ("x",)
    assert probe.calls == ["x", "y"]


@pytest.mark.asyncio
async def test_no_available_candidate_lists_everything_tried() -> None:
    probe = StubProbe({"x": False, "y": False})
    resolver = ProviderResolver(fallback_order=FALLBACK)
    before = REGISTRY.get_sample_value("agent_dispatch_provider_resolution_total", {"outcome": "unavailable"}) or 0.0

    with pytest.raises(ProviderResolutionError) as excinfo:
        await resolver.resolve(["x", "y"], probe)

    assert excinfo.value.tried == ("x", "y")
    assert "tried: x, y" in str(excinfo.value)
    after = REGISTRY.get_sample_value("agent_dispatch_provider_resolution_total", {"outcome": "unavailable"})
    assert after == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_probe_failure_counts_as_unavailable() -> None:
    probe = StubProbe({"gemini": True}, raising={"claude"})
    resolver = ProviderResolver(fallback_order=FALLBACK)

    resolved = await resolver.resolve(None, probe)

    assert resolved.name == "gemini"
    assert resolved.is_fallback is True


@pytest.mark.asyncio
async def test_async_probe_and_settings_factory() -> None:
    probe = AsyncStubProbe({"copilot": True})
    settings = ProviderSettings(fallback_order=["copilot", "claude"], default_models={"copilot": "gpt-4o"})
    resolver = ProviderResolver.from_settings(settings, probe=probe)

    resolved = await resolver.resolve(None)

    assert resolved.name == "copilot"
    assert resolved.default_model == "gpt-4o"
    assert resolver.fallback_order == ("copilot", "claude")


@pytest.mark.asyncio
async def test_fallback_order_override_per_call() -> None:
    probe = StubProbe({"gemini": True, "claude": True})
    resolver = ProviderResolver(fallback_order=FALLBACK)

    resolved = await resolver.resolve(None, probe, fallback_order=["gemini"])

    assert resolved.name == "gemini"
    assert resolved.is_fallback is False


@pytest.mark.asyncio
async def test_resolve_without_probe_is_rejected() -> None:
    with pytest.raises(ValueError):
        await ProviderResolver().resolve("claude")
