from __future__ import annotations

import pytest

from agent_dispatch.core.config import ProviderSettings, Settings, get_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.scheduling.max_concurrency == 5
    assert settings.scheduling.timeout_ms == 1_800_000
    assert settings.scheduling.fail_fast is False
    assert settings.providers.fallback_order == ["claude", "gemini", "copilot"]
    assert settings.tracking.enabled is True


def test_nested_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_SCHEDULING__MAX_CONCURRENCY", "2")
    monkeypatch.setenv("AGENT_DISPATCH_PROVIDERS__FALLBACK_ORDER", '["gemini", "claude"]')

    settings = Settings()

    assert settings.scheduling.max_concurrency == 2
    assert settings.providers.fallback_order == ["gemini", "claude"]


def test_get_settings_overrides_bypass_cache() -> None:
    settings = get_settings({"scheduling": {"max_concurrency": 9}})

    assert settings.scheduling.max_concurrency == 9
    assert get_settings() is get_settings()


def test_fallback_order_is_cleaned() -> None:
    settings = ProviderSettings(fallback_order=[" claude ", "", "claude", "gemini"])

    assert settings.fallback_order == ["claude", "gemini"]
