from __future__ import annotations

import pytest
import structlog
from prometheus_client import REGISTRY

from agent_dispatch.core.config import Settings
from agent_dispatch.core.exceptions import PermissionValidationError, TaskExecutionError
from agent_dispatch.orchestration.enums import BatchStatus, TaskStatus
from agent_dispatch.orchestration.orchestrator import Orchestrator
from agent_dispatch.orchestration.scheduler import SchedulerOptions, TaskCallbacks, TaskScheduler
from agent_dispatch.orchestration.tracking import TaskTracker, TrackedStatus
from agent_dispatch.providers import MockProvider, ProviderRegistry, StaticAgentRegistry
from agent_dispatch.schemas.agents import AgentDefinition
from agent_dispatch.schemas.providers import ProviderResponse
from tests.helpers.stubs import StubExecutor, StubProbe

AGENTS = [
    AgentDefinition(id="a", provider="claude", working_directory="/work/a"),
    AgentDefinition(id="b", provider="gemini"),
]


def make_orchestrator(executor: StubExecutor, probe: StubProbe, **kwargs) -> Orchestrator:
    settings = kwargs.pop("settings", None) or Settings(providers={"default_models": {"claude": "sonnet"}})
    return Orchestrator(executor=executor, probe=probe, settings=settings, **kwargs)


@pytest.mark.asyncio
async def test_two_agents_run_and_return_in_order() -> None:
    executor = StubExecutor({"t1": 0.05})
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}))

    batch = await orchestrator.run_batch("@a t1\n@b t2", agents=AGENTS)

    assert [result.agent_id for result in batch.results] == ["a", "b"]
    assert [result.success for result in batch.results] == [True, True]
    assert batch.results[0].content == "a:t1"
    assert batch.results[0].task_id == "a:query:0"
    assert batch.results[1].provider == "gemini"
    assert batch.summary.total == 2
    assert batch.summary.failed == 0
    assert batch.status is BatchStatus.SUCCEEDED
    assert batch.parse_errors == []


@pytest.mark.asyncio
async def test_instruction_lines_are_accepted() -> None:
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}))

    batch = await orchestrator.run_batch(["@a t1", "@b t2"], agents=AGENTS)

    assert [call["prompt"] for call in sorted(executor.calls, key=lambda call: call["prompt"])] == ["t1", "t2"]
    assert batch.summary.total == 2


@pytest.mark.asyncio
async def test_unresolved_provider_becomes_failed_result_in_place() -> None:
    agents = [
        AgentDefinition(id="a", provider=["ghost", "phantom"]),
        AgentDefinition(id="b", provider="claude"),
    ]
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True}))

    batch = await orchestrator.run_batch("@a first\n@b second", agents=agents)

    first, second = batch.results
    assert first.status is TaskStatus.FAILED
    assert first.failure_reason == "No provider available (tried: ghost, phantom)"
    assert first.started_at is None
    assert second.success is True
    assert batch.summary.total == 2
    assert batch.summary.failed == 1
    assert batch.status is BatchStatus.PARTIAL
    assert [call["agent_id"] for call in executor.calls] == ["b"]


@pytest.mark.asyncio
async def test_invalid_permission_config_aborts_before_scheduling() -> None:
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}))

    with pytest.raises(PermissionValidationError):
        await orchestrator.run_batch(
            "@a t1",
            agents=AGENTS,
            provider_configs={"claude": {"capabilities": "Bash"}},
        )

    assert executor.calls == []


@pytest.mark.asyncio
async def test_mode_scoped_permissions_reach_the_executor() -> None:
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True}))

    await orchestrator.run_batch(
        "@a deploy it",
        agents=AGENTS,
        mode="execute",
        provider_configs={
            "claude": {"capabilities": ["Bash"], "options": {"query": {"capabilities": ["Read"]}}},
        },
    )

    call = executor.calls[0]
    assert call["mode"] == "execute"
    assert call["permissions"].capabilities == frozenset({"Bash"})
    assert call["working_directory"] == "/work/a"


@pytest.mark.asyncio
async def test_model_precedence_override_agent_then_provider_default() -> None:
    agents = [
        AgentDefinition(id="a", provider="claude"),
        AgentDefinition(id="b", provider="claude", model="haiku"),
        AgentDefinition(id="c", provider="claude", model="haiku"),
    ]
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True}))

    batch = await orchestrator.run_batch("@a one\n@b two\n@c:opus three", agents=agents)

    assert [result.model for result in batch.results] == ["sonnet", "haiku", "opus"]


@pytest.mark.asyncio
async def test_agent_named_after_provider_uses_that_provider() -> None:
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}))

    batch = await orchestrator.run_batch("@gemini explain", agents=[{"id": "gemini"}])

    assert batch.results[0].provider == "gemini"
    assert batch.results[0].is_fallback is False


@pytest.mark.asyncio
async def test_fallback_provider_is_flagged() -> None:
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"gemini": True}))

    batch = await orchestrator.run_batch("@a t1", agents=AGENTS)

    assert batch.results[0].provider == "gemini"
    assert batch.results[0].is_fallback is True


@pytest.mark.asyncio
async def test_provider_failures_are_captured_per_task() -> None:
    executor = StubExecutor(
        {
            "refused": ProviderResponse(success=False, error="rate limited"),
            "crash": TaskExecutionError("cli exited with 1"),
        }
    )
    agents = [AgentDefinition(id=name, provider="claude") for name in ("a", "b", "c")]
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True}))

    batch = await orchestrator.run_batch("@a refused\n@b crash\n@c fine", agents=agents)

    refused, crash, fine = batch.results
    assert refused.failure_reason == "rate limited"
    assert refused.response is not None and refused.response.success is False
    assert crash.failure_reason == "cli exited with 1"
    assert crash.response is None
    assert fine.success is True
    assert batch.summary.failed == 2
    report = batch.performance()
    assert report.successful_agents == ["c"]
    assert report.failed_agents == [("a", "rate limited"), ("b", "cli exited with 1")]
    assert report.success_rate == pytest.approx(100 / 3)


@pytest.mark.asyncio
async def test_timeout_is_reported_with_specific_reason() -> None:
    executor = StubExecutor({"slow": 5.0})
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}))
    before = REGISTRY.get_sample_value("agent_dispatch_task_event_total", {"provider": "claude", "event": "timed_out"}) or 0.0

    batch = await orchestrator.run_batch("@a slow\n@b quick", agents=AGENTS, options=SchedulerOptions(timeout_ms=50))

    slow, quick = batch.results
    assert slow.status is TaskStatus.TIMED_OUT
    assert slow.failure_reason == "Task a:query:0 timed out after 50ms"
    assert quick.success is True
    assert batch.summary.timed_out == 1
    after = REGISTRY.get_sample_value("agent_dispatch_task_event_total", {"provider": "claude", "event": "timed_out"})
    assert after == pytest.approx(before + 1.0)


@pytest.mark.asyncio
async def test_parse_errors_and_unmatched_text_are_surfaced() -> None:
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True}))

    batch = await orchestrator.run_batch("preface\n@a @ghost work", agents=AGENTS)

    assert batch.parse_errors == ["Unknown agent: @ghost"]
    assert batch.unmatched_text == ["preface"]
    assert [result.agent_id for result in batch.results] == ["a"]


@pytest.mark.asyncio
async def test_empty_batch_reports_empty_status() -> None:
    orchestrator = make_orchestrator(StubExecutor(), StubProbe({}))

    batch = await orchestrator.run_batch("no mentions here", agents=AGENTS)

    assert batch.results == []
    assert batch.status is BatchStatus.EMPTY
    assert batch.summary.total == 0
    assert batch.performance().total_agents == 0


@pytest.mark.asyncio
async def test_probe_results_are_memoized_within_a_batch() -> None:
    probe = StubProbe({"claude": False, "gemini": True})
    agents = [AgentDefinition(id=name, provider="claude") for name in ("a", "b")]
    orchestrator = make_orchestrator(StubExecutor(), probe)

    batch = await orchestrator.run_batch("@a @b same", agents=agents)

    assert [result.provider for result in batch.results] == ["gemini", "gemini"]
    assert probe.calls == ["claude", "gemini"]


@pytest.mark.asyncio
async def test_concurrency_option_bounds_executor_calls() -> None:
    executor = StubExecutor({"work": 0.02})
    agents = [AgentDefinition(id=f"agent_{index}", provider="claude") for index in range(5)]
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True}))
    mentions = " ".join(f"@{agent.id}" for agent in agents)

    batch = await orchestrator.run_batch(f"{mentions} work", agents=agents, options=SchedulerOptions(max_concurrency=2))

    assert executor.peak == 2
    assert batch.summary.succeeded == 5


@pytest.mark.asyncio
async def test_tracker_records_each_started_task() -> None:
    tracker = TaskTracker()
    executor = StubExecutor({"t2": ProviderResponse(success=False, error="denied")})
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}), tracker=tracker)

    await orchestrator.run_batch("@a t1\n@b t2", agents=AGENTS)

    records = tracker.list()
    assert [record.agent_id for record in records] == ["a", "b"]
    assert [record.status for record in records] == [TrackedStatus.COMPLETED, TrackedStatus.FAILED]
    assert records[0].result == "a:t1"


@pytest.mark.asyncio
async def test_from_registry_with_mock_providers() -> None:
    claude = MockProvider("claude", available=False)
    gemini = MockProvider("gemini", default_model="flash")
    registry = ProviderRegistry([claude, gemini])
    agents = StaticAgentRegistry([{"id": "a", "provider": "claude"}])
    orchestrator = Orchestrator.from_registry(
        registry,
        settings=Settings(tracking={"enabled": False}),
        agents=agents,
    )

    batch = await orchestrator.run_batch("@a summarise")

    result = batch.results[0]
    assert result.success is True
    assert result.provider == "gemini"
    assert result.is_fallback is True
    assert result.content == "Mock response for: summarise"
    assert result.response is not None and result.response.model == "flash"
    assert claude.calls == []
    assert orchestrator.tracker is None


@pytest.mark.asyncio
async def test_injected_scheduler_defaults_apply() -> None:
    executor = StubExecutor({"t1": 5.0})
    orchestrator = make_orchestrator(
        executor,
        StubProbe({"claude": True, "gemini": True}),
        scheduler=TaskScheduler(timeout_ms=30, cancel_grace_ms=0),
    )

    batch = await orchestrator.run_batch("@a t1", agents=AGENTS)

    assert batch.results[0].status is TaskStatus.TIMED_OUT


@pytest.mark.asyncio
async def test_batch_id_is_bound_for_the_duration_of_the_run() -> None:
    seen: list[dict] = []
    executor = StubExecutor()
    orchestrator = make_orchestrator(executor, StubProbe({"claude": True, "gemini": True}))
    options = SchedulerOptions(
        callbacks=TaskCallbacks(on_start=lambda task: seen.append(structlog.contextvars.get_contextvars()))
    )

    await orchestrator.run_batch("@a t1\n@b t2", agents=AGENTS, options=options)

    assert len(seen) == 2
    assert seen[0]["batch_id"] == seen[1]["batch_id"]
    assert "batch_id" not in structlog.contextvars.get_contextvars()
