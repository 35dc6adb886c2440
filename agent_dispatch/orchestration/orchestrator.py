"""
Batch orchestration.

Turns one instruction into a batch of provider calls: mentions are parsed into per-agent tasks,
each task gets a resolved provider and mode-scoped permissions, the batch runs through the
bounded scheduler and the results come back as one entry per parsed task, in parse order.
"""

from __future__ import annotations

import inspect
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence, Union

import structlog

from ..core.config import Settings, get_settings
from ..core.exceptions import PermissionValidationError, ProviderResolutionError, TaskCancelledError, TaskTimeoutError
from ..core.logging import get_logger
from ..core.metrics import (
    increment_parse_warnings,
    increment_task_event,
    mark_task_active,
    mark_task_inactive,
    observe_task_latency,
    record_batch_run,
)
from ..providers.base import AgentRegistry, ExecutionOptions, ProviderExecutor
from ..providers.registry import ProviderRegistry
from ..schemas.agents import AgentDefinition
from ..schemas.providers import ProviderResponse
from .cancellation import CancellationToken
from .enums import BatchStatus, TaskStatus
from .mentions import MentionParser, TaskDescriptor
from .permissions import NormalizedPermissions, PermissionNormalizer
from .resolver import AvailabilityProbe, ProviderResolver, ResolvedProvider
from .scheduler import (
    RunMetrics,
    ScheduledTask,
    SchedulerOptions,
    TaskCallbacks,
    TaskResult,
    TaskScheduler,
    default_evaluate_success,
)
from .tracking import TaskTracker

logger = get_logger(name=__name__)

AgentSource = Union[AgentRegistry, Iterable[Union[AgentDefinition, Mapping[str, Any]]]]


@dataclass(slots=True)
class AgentTaskResult:
    index: int
    agent_id: str
    task_text: str
    mode: str
    status: TaskStatus
    success: bool
    provider: str | None = None
    model: str | None = None
    is_fallback: bool = False
    response: ProviderResponse | None = None
    failure_reason: str | None = None
    duration_ms: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    task_id: str | None = None

    @property
    def content(self) -> str | None:
        return self.response.content if self.response is not None else None


@dataclass(slots=True)
class PerformanceReport:
    total_agents: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    fastest_ms: float = 0.0
    slowest_ms: float = 0.0
    successful_agents: list[str] = field(default_factory=list)
    failed_agents: list[tuple[str, str | None]] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    results: list[AgentTaskResult] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)
    unmatched_text: list[str] = field(default_factory=list)
    summary: RunMetrics = field(default_factory=RunMetrics)

    @property
    def status(self) -> BatchStatus:
        if not self.results:
            return BatchStatus.EMPTY
        succeeded = sum(1 for result in self.results if result.success)
        if succeeded == len(self.results):
            return BatchStatus.SUCCEEDED
        if succeeded == 0:
            return BatchStatus.FAILED
        return BatchStatus.PARTIAL

    def performance(self) -> PerformanceReport:
        """Summarize per-agent outcomes; success rate is a percentage."""
        if not self.results:
            return PerformanceReport()
        durations = [result.duration_ms for result in self.results if result.started_at is not None]
        successful = [result.agent_id for result in self.results if result.success]
        return PerformanceReport(
            total_agents=len(self.results),
            success_rate=len(successful) / len(self.results) * 100,
            average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            fastest_ms=min(durations) if durations else 0.0,
            slowest_ms=max(durations) if durations else 0.0,
            successful_agents=successful,
            failed_agents=[(result.agent_id, result.failure_reason) for result in self.results if not result.success],
        )


def _response_succeeded(value: Any) -> bool:
    if isinstance(value, ProviderResponse):
        return value.success
    return default_evaluate_success(value)


def _describe_response_failure(value: Any) -> str:
    error = getattr(value, "error", None)
    return str(error) if error else "Provider reported an unsuccessful response"


class _BatchSink:
    """Callback sink that mirrors scheduler lifecycle events into logs, metrics and the tracker."""

    def __init__(
        self,
        *,
        log: Any,
        tracker: TaskTracker | None,
        prometheus_enabled: bool,
    ) -> None:
        self._log = log
        self._tracker = tracker
        self._metrics = prometheus_enabled
        self._tracked: dict[str, str] = {}

    def callbacks(self) -> TaskCallbacks:
        return TaskCallbacks(on_start=self.on_start, on_complete=self.on_complete, on_error=self.on_error)

    def on_start(self, task: ScheduledTask[Any]) -> None:
        provider = str(task.metadata.get("provider"))
        if self._metrics:
            increment_task_event(provider=provider, event="started")
            mark_task_active(provider=provider)
        if self._tracker is not None:
            tracked = self._tracker.create(
                mode=str(task.metadata.get("mode")),
                agent_id=task.metadata.get("agent_id"),
                provider=provider,
                prompt=task.metadata.get("prompt"),
            )
            self._tracked[task.id] = tracked
            self._tracker.add_log(tracked, level="info", message=f"Started {task.id} on {provider}")
        self._log.info(
            "agent_task_started",
            task_id=task.id,
            agent=task.metadata.get("agent_id"),
            provider=provider,
            model=task.metadata.get("model"),
        )

    def on_complete(self, result: TaskResult[Any]) -> None:
        provider = str(result.metadata.get("provider"))
        status = result.status.value
        if self._metrics:
            mark_task_inactive(provider=provider)
            increment_task_event(provider=provider, event="completed" if result.success else "failed")
            observe_task_latency(provider=provider, status=status, latency=result.duration_ms / 1000)
        tracked = self._tracked.get(result.task_id)
        if self._tracker is not None and tracked is not None:
            if not result.success:
                self._tracker.add_log(tracked, level="error", message=result.failure_reason or "unsuccessful")
            content = result.value.content if isinstance(result.value, ProviderResponse) else result.value
            self._tracker.complete(tracked, result=content, success=result.success)
        if result.success:
            self._log.info(
                "agent_task_completed",
                task_id=result.task_id,
                provider=provider,
                duration_ms=round(result.duration_ms, 2),
            )
        else:
            self._log.warning(
                "agent_task_unsuccessful",
                task_id=result.task_id,
                provider=provider,
                reason=result.failure_reason,
                duration_ms=round(result.duration_ms, 2),
            )

    def on_error(self, task: ScheduledTask[Any], error: BaseException, duration_ms: float) -> None:
        provider = str(task.metadata.get("provider"))
        if isinstance(error, TaskTimeoutError):
            status = TaskStatus.TIMED_OUT
        elif isinstance(error, TaskCancelledError):
            status = TaskStatus.CANCELLED
        else:
            status = TaskStatus.FAILED
        if self._metrics:
            mark_task_inactive(provider=provider)
            increment_task_event(provider=provider, event=status.value)
            observe_task_latency(provider=provider, status=status.value, latency=duration_ms / 1000)
        tracked = self._tracked.get(task.id)
        if self._tracker is not None and tracked is not None:
            self._tracker.add_log(tracked, level="error", message=str(error))
            self._tracker.complete(tracked, result=None, success=False)
        self._log.warning(
            "agent_task_error",
            task_id=task.id,
            provider=provider,
            status=status.value,
            error=str(error),
            duration_ms=round(duration_ms, 2),
        )


class Orchestrator:
    """Run mention-addressed instructions against pluggable providers.

    Only a malformed provider permission configuration aborts ``run_batch``. Unknown agents,
    unavailable providers and failing provider calls all end up as per-task results.
    """

    def __init__(
        self,
        *,
        executor: ProviderExecutor,
        probe: AvailabilityProbe,
        settings: Settings | None = None,
        scheduler: TaskScheduler | None = None,
        resolver: ProviderResolver | None = None,
        normalizer: PermissionNormalizer | None = None,
        tracker: TaskTracker | None = None,
        agents: AgentRegistry | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._executor = executor
        self._probe = probe
        self._scheduler = scheduler or TaskScheduler.from_settings(self._settings.scheduling)
        self._resolver = resolver or ProviderResolver.from_settings(self._settings.providers)
        self._normalizer = normalizer or PermissionNormalizer()
        self._tracker = tracker
        self._agents = agents

    @classmethod
    def from_registry(
        cls,
        registry: ProviderRegistry,
        *,
        settings: Settings | None = None,
        agents: AgentRegistry | None = None,
        tracker: TaskTracker | None = None,
    ) -> "Orchestrator":
        resolved_settings = settings or get_settings()
        if tracker is None:
            tracker = TaskTracker.from_settings(resolved_settings.tracking)
        return cls(
            executor=registry,
            probe=registry.is_available,
            settings=resolved_settings,
            agents=agents,
            tracker=tracker,
        )

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    @property
    def tracker(self) -> TaskTracker | None:
        return self._tracker

    async def run_batch(
        self,
        instruction: str | Sequence[str],
        *,
        agents: AgentSource | None = None,
        provider_configs: Mapping[str, Any] | None = None,
        mode: str = "query",
        options: SchedulerOptions | None = None,
    ) -> BatchResult:
        batch_id = uuid.uuid4().hex[:12]
        with structlog.contextvars.bound_contextvars(batch_id=batch_id):
            return await self._run_batch(
                instruction,
                agents=agents,
                provider_configs=provider_configs,
                mode=mode,
                options=options,
            )

    async def _run_batch(
        self,
        instruction: str | Sequence[str],
        *,
        agents: AgentSource | None,
        provider_configs: Mapping[str, Any] | None,
        mode: str,
        options: SchedulerOptions | None,
    ) -> BatchResult:
        started = time.perf_counter()
        log = logger.bind(mode=mode)

        permissions = self._normalize_configs(provider_configs or {}, log)
        agent_map = self._agent_map(agents)

        parsed = MentionParser(agent_map).parse(instruction)
        for error in parsed.errors:
            log.warning("mention_parse_warning", error=error)
        if self._settings.observability.prometheus_enabled:
            increment_parse_warnings(count=len(parsed.errors))

        provider_names = (
            set(permissions)
            | set(self._resolver.fallback_order)
            | set(self._settings.providers.default_models)
        )
        probe = self._memoized_probe()

        failures: dict[int, AgentTaskResult] = {}
        tasks: list[ScheduledTask[ProviderResponse]] = []
        for index, descriptor in enumerate(parsed.tasks):
            agent = agent_map[descriptor.agent_id]
            try:
                resolved = await self._resolver.resolve(agent.provider_spec(provider_names), probe)
            except ProviderResolutionError as exc:
                log.warning("agent_task_unresolved", agent=agent.id, index=index, tried=list(exc.tried))
                failures[index] = AgentTaskResult(
                    index=index,
                    agent_id=agent.id,
                    task_text=descriptor.task_text,
                    mode=mode,
                    status=TaskStatus.FAILED,
                    success=False,
                    failure_reason=str(exc),
                )
                continue
            tasks.append(self._build_task(index, descriptor, agent, resolved, mode, permissions, log))

        sink = _BatchSink(
            log=log,
            tracker=self._tracker,
            prometheus_enabled=self._settings.observability.prometheus_enabled,
        )
        run_options = self._run_options(options, sink)

        log.info(
            "batch_started",
            tasks=len(parsed.tasks),
            scheduled=len(tasks),
            unresolved=len(failures),
            parse_errors=len(parsed.errors),
        )
        scheduled_results = await self._scheduler.run(tasks, run_options)
        summary = self._scheduler.get_metrics().with_unscheduled_failures(len(failures))

        merged: dict[int, AgentTaskResult] = dict(failures)
        for result in scheduled_results:
            mapped = self._map_result(result, parsed.tasks)
            merged[mapped.index] = mapped

        batch = BatchResult(
            results=[merged[index] for index in sorted(merged)],
            parse_errors=list(parsed.errors),
            unmatched_text=list(parsed.unmatched_text),
            summary=summary,
        )
        latency = time.perf_counter() - started
        if self._settings.observability.prometheus_enabled:
            record_batch_run(status=batch.status.value, latency=latency, tasks=len(parsed.tasks))
        log.info(
            "batch_completed",
            status=batch.status.value,
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            latency_ms=round(latency * 1000, 2),
        )
        return batch

    def _normalize_configs(self, provider_configs: Mapping[str, Any], log: Any) -> dict[str, NormalizedPermissions]:
        normalized: dict[str, NormalizedPermissions] = {}
        for name, raw in provider_configs.items():
            try:
                normalized[name] = self._normalizer.normalize(raw)
            except PermissionValidationError as exc:
                log.error("provider_config_invalid", provider=name, error=str(exc))
                raise
        return normalized

    def _agent_map(self, agents: AgentSource | None) -> dict[str, AgentDefinition]:
        source: Any = agents if agents is not None else self._agents
        if source is None:
            return {}
        if hasattr(source, "list_agents"):
            source = source.list_agents()
        agent_map: dict[str, AgentDefinition] = {}
        for entry in source:
            definition = entry if isinstance(entry, AgentDefinition) else AgentDefinition.model_validate(entry)
            agent_map.setdefault(definition.id, definition)
        return agent_map

    def _memoized_probe(self) -> AvailabilityProbe:
        cache: dict[str, bool] = {}

        async def probe(name: str) -> bool:
            if name not in cache:
                outcome = self._probe(name)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                cache[name] = bool(outcome)
            return cache[name]

        return probe

    def _build_task(
        self,
        index: int,
        descriptor: TaskDescriptor,
        agent: AgentDefinition,
        resolved: ResolvedProvider,
        mode: str,
        permissions: Mapping[str, NormalizedPermissions],
        log: Any,
    ) -> ScheduledTask[ProviderResponse]:
        model = descriptor.model_for(agent.id) or agent.model or resolved.default_model
        provider_permissions = permissions.get(resolved.name)
        if provider_permissions is None:
            provider_permissions = self._normalizer.normalize(None)
        mode_permissions = provider_permissions.for_mode(mode)
        task_id = f"{agent.id}:{mode}:{index}"
        prompt = descriptor.task_text
        executor = self._executor
        task_log = log.bind(task_id=task_id, agent=agent.id, provider=resolved.name)

        async def run(token: CancellationToken) -> ProviderResponse:
            return await executor.execute(
                resolved.name,
                prompt,
                mode,
                mode_permissions,
                ExecutionOptions(
                    agent_id=agent.id,
                    model=model,
                    working_directory=agent.working_directory,
                    cancellation=token,
                    logger=task_log,
                ),
            )

        return ScheduledTask(
            id=task_id,
            run=run,
            metadata={
                "index": index,
                "agent_id": agent.id,
                "provider": resolved.name,
                "mode": mode,
                "model": model,
                "is_fallback": resolved.is_fallback,
                "prompt": prompt,
            },
        )

    def _run_options(self, options: SchedulerOptions | None, sink: _BatchSink) -> SchedulerOptions:
        callbacks = sink.callbacks()
        if options is None:
            return SchedulerOptions(
                evaluate_success=_response_succeeded,
                describe_failure=_describe_response_failure,
                callbacks=callbacks,
            )
        return SchedulerOptions(
            max_concurrency=options.max_concurrency,
            timeout_ms=options.timeout_ms,
            fail_fast=options.fail_fast,
            evaluate_success=options.evaluate_success or _response_succeeded,
            describe_failure=options.describe_failure or _describe_response_failure,
            callbacks=callbacks.combine(options.callbacks),
            cancel_grace_ms=options.cancel_grace_ms,
        )

    def _map_result(self, result: TaskResult[Any], descriptors: Sequence[TaskDescriptor]) -> AgentTaskResult:
        metadata = result.metadata
        index = int(metadata["index"])
        response = result.value if isinstance(result.value, ProviderResponse) else None
        return AgentTaskResult(
            index=index,
            agent_id=str(metadata["agent_id"]),
            task_text=descriptors[index].task_text,
            mode=str(metadata["mode"]),
            status=result.status,
            success=result.success,
            provider=metadata.get("provider"),
            model=metadata.get("model"),
            is_fallback=bool(metadata.get("is_fallback")),
            response=response,
            failure_reason=result.failure_reason,
            duration_ms=result.duration_ms,
            started_at=result.started_at,
            finished_at=result.finished_at,
            task_id=result.task_id,
        )


__all__ = [
    "AgentTaskResult",
    "BatchResult",
    "Orchestrator",
    "PerformanceReport",
]
