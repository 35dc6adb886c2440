"""
Bounded-concurrency task scheduler.

Runs a batch of independent, named units with FIFO admission, a per-task timeout, cooperative
cancellation and lifecycle callbacks. Results come back in submission order together with
aggregate run metrics. The scheduler knows nothing about agents or providers.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, Sequence, TypeVar, Union

from ..core.config import SchedulingSettings
from ..core.exceptions import TaskCancelledError, TaskTimeoutError
from ..core.logging import get_logger
from .cancellation import CancellationToken
from .enums import TaskStatus

logger = get_logger(name=__name__)

R = TypeVar("R")

TaskBody = Callable[[CancellationToken], Union[Awaitable[R], R]]
StartHook = Callable[["ScheduledTask[Any]"], Any]
CompleteHook = Callable[["TaskResult[Any]"], Any]
ErrorHook = Callable[["ScheduledTask[Any]", BaseException, float], Any]


@dataclass(frozen=True)
class ScheduledTask(Generic[R]):
    id: str
    run: TaskBody[R]
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskResult(Generic[R]):
    task_id: str
    status: TaskStatus
    success: bool
    value: R | None = None
    failure_reason: str | None = None
    error: BaseException | None = None
    duration_ms: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def aborted(self) -> bool:
        return self.status in {TaskStatus.TIMED_OUT, TaskStatus.CANCELLED}

    @property
    def started(self) -> bool:
        return self.started_at is not None


@dataclass(slots=True, frozen=True)
class RunMetrics:
    total: int = 0
    started: int = 0
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    cancelled: int = 0
    total_duration_ms: float = 0.0
    average_duration_ms: float = 0.0
    throughput: float = 0.0

    @classmethod
    def from_results(cls, results: Sequence[TaskResult[Any]]) -> "RunMetrics":
        started = [result for result in results if result.started]
        succeeded = sum(1 for result in results if result.success)
        total_duration_ms = 0.0
        if started:
            first_start = min(result.started_at for result in started)  # type: ignore[type-var]
            last_finish = max(result.finished_at or result.started_at for result in started)  # type: ignore[type-var]
            total_duration_ms = max(0.0, (last_finish - first_start).total_seconds() * 1000)
        average = sum(result.duration_ms for result in started) / len(started) if started else 0.0
        completed = len(started)
        throughput = completed / (total_duration_ms / 1000) if total_duration_ms > 0 else 0.0
        return cls(
            total=len(results),
            started=len(started),
            completed=completed,
            succeeded=succeeded,
            failed=len(results) - succeeded,
            timed_out=sum(1 for result in results if result.status is TaskStatus.TIMED_OUT),
            cancelled=sum(1 for result in results if result.status is TaskStatus.CANCELLED),
            total_duration_ms=total_duration_ms,
            average_duration_ms=average,
            throughput=throughput,
        )

    def with_unscheduled_failures(self, count: int) -> "RunMetrics":
        """Account for tasks that failed before they ever reached the scheduler."""
        if count <= 0:
            return self
        return replace(self, total=self.total + count, failed=self.failed + count)

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.total if self.total else 0.0


def _chain(first: Callable[..., Any] | None, second: Callable[..., Any] | None) -> Callable[..., Any] | None:
    if first is None:
        return second
    if second is None:
        return first

    def chained(*args: Any) -> Any:
        pending: list[Awaitable[Any]] = []
        for hook in (first, second):
            try:
                outcome = hook(*args)
            except Exception as exc:  # noqa: BLE001
                logger.warning("scheduler_callback_failed", callback=getattr(hook, "__name__", repr(hook)), error=str(exc))
                continue
            if inspect.isawaitable(outcome):
                pending.append(outcome)
        if pending:
            return asyncio.gather(*pending)
        return None

    return chained


@dataclass(slots=True, frozen=True)
class TaskCallbacks:
    on_start: StartHook | None = None
    on_complete: CompleteHook | None = None
    on_error: ErrorHook | None = None

    def combine(self, other: "TaskCallbacks | None") -> "TaskCallbacks":
        """Return callbacks that invoke ``self`` first and then ``other``."""
        if other is None:
            return self
        return TaskCallbacks(
            on_start=_chain(self.on_start, other.on_start),
            on_complete=_chain(self.on_complete, other.on_complete),
            on_error=_chain(self.on_error, other.on_error),
        )


def default_evaluate_success(value: Any) -> bool:
    if isinstance(value, Mapping) and "success" in value:
        return bool(value["success"])
    flag = getattr(value, "success", None)
    if isinstance(flag, bool):
        return flag
    return True


def default_describe_failure(value: Any) -> str:
    error = value.get("error") if isinstance(value, Mapping) else getattr(value, "error", None)
    if error:
        return str(error)
    return "Task reported an unsuccessful result"


@dataclass(slots=True, frozen=True)
class SchedulerOptions:
    """Per-run scheduler options.

    ``None`` means "inherit the scheduler default" for every field. Callbacks are combined with
    the scheduler's own callbacks rather than replacing them.
    """

    max_concurrency: int | None = None
    timeout_ms: int | None = None
    fail_fast: bool | None = None
    evaluate_success: Callable[[Any], bool] | None = None
    describe_failure: Callable[[Any], str] | None = None
    callbacks: TaskCallbacks | None = None
    cancel_grace_ms: int | None = None


@dataclass(slots=True, frozen=True)
class _RunOptions:
    max_concurrency: int
    timeout_ms: int | None
    fail_fast: bool
    evaluate_success: Callable[[Any], bool]
    describe_failure: Callable[[Any], str]
    callbacks: TaskCallbacks
    cancel_grace_ms: int | None

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {self.max_concurrency}")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.cancel_grace_ms is not None and self.cancel_grace_ms < 0:
            raise ValueError(f"cancel_grace_ms must not be negative, got {self.cancel_grace_ms}")

    def merge(self, override: SchedulerOptions | None) -> "_RunOptions":
        if override is None:
            return self

        def pick(value: Any, default: Any) -> Any:
            return default if value is None else value

        return _RunOptions(
            max_concurrency=pick(override.max_concurrency, self.max_concurrency),
            timeout_ms=pick(override.timeout_ms, self.timeout_ms),
            fail_fast=pick(override.fail_fast, self.fail_fast),
            evaluate_success=pick(override.evaluate_success, self.evaluate_success),
            describe_failure=pick(override.describe_failure, self.describe_failure),
            callbacks=self.callbacks.combine(override.callbacks),
            cancel_grace_ms=pick(override.cancel_grace_ms, self.cancel_grace_ms),
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started_at: datetime, finished_at: datetime) -> float:
    return max(0.0, (finished_at - started_at).total_seconds() * 1000)


class _Batch:
    """State for a single ``TaskScheduler.run`` call."""

    def __init__(self, tasks: Sequence[ScheduledTask[Any]], options: _RunOptions) -> None:
        self.tasks = tasks
        self.options = options
        self.results: dict[str, TaskResult[Any]] = {}
        self.abort = asyncio.Event()
        self.abort_reason: str | None = None
        self.slots = asyncio.Semaphore(options.max_concurrency)
        self.workers: list[asyncio.Task[None]] = []
        self.callback_tasks: set[asyncio.Future[Any]] = set()

    async def execute(self) -> list[TaskResult[Any]]:
        try:
            for task in self.tasks:
                if not await self._acquire_slot():
                    break
                token = CancellationToken()
                started_at = _now()
                self._fire("on_start", self.options.callbacks.on_start, task)
                self.workers.append(asyncio.create_task(self._work(task, token, started_at)))
            if self.workers:
                await asyncio.gather(*self.workers)
        except asyncio.CancelledError:
            self._trigger_abort("scheduler run cancelled")
            for worker in self.workers:
                worker.cancel()
            await asyncio.gather(*self.workers, return_exceptions=True)
            raise

        for task in self.tasks:
            if task.id not in self.results:
                self.results[task.id] = TaskResult(
                    task_id=task.id,
                    status=TaskStatus.CANCELLED,
                    success=False,
                    failure_reason=f"Task {task.id} was not started: {self.abort_reason or 'batch aborted'}",
                    metadata=MappingProxyType(dict(task.metadata)),
                )

        while self.callback_tasks:
            await asyncio.gather(*list(self.callback_tasks), return_exceptions=True)

        return [self.results[task.id] for task in self.tasks]

    async def _acquire_slot(self) -> bool:
        if self.abort.is_set():
            return False
        if not self.slots.locked():
            await self.slots.acquire()
            return True

        acquire = asyncio.ensure_future(self.slots.acquire())
        abort_wait = asyncio.ensure_future(self.abort.wait())
        try:
            await asyncio.wait({acquire, abort_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_wait.cancel()
            if not acquire.done():
                acquire.cancel()
        try:
            await acquire
        except asyncio.CancelledError:
            return False
        if self.abort.is_set():
            self.slots.release()
            return False
        return True

    async def _work(self, task: ScheduledTask[Any], token: CancellationToken, started_at: datetime) -> None:
        body = asyncio.ensure_future(self._invoke(task, token))
        try:
            abort_wait = asyncio.ensure_future(self.abort.wait())
            timeout = self.options.timeout_ms / 1000 if self.options.timeout_ms is not None else None
            try:
                done, _ = await asyncio.wait({body, abort_wait}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            finally:
                abort_wait.cancel()

            if body in done:
                self._settle(task, body, started_at)
                return

            if self.abort.is_set():
                reason = self.abort_reason or "batch aborted"
                token.cancel(reason)
                self._record_abort(task, TaskStatus.CANCELLED, TaskCancelledError(reason), started_at)
            else:
                token.cancel("timeout")
                timeout_ms = self.options.timeout_ms or 0
                logger.warning("scheduled_task_timeout", task_id=task.id, timeout_ms=timeout_ms)
                self._record_abort(task, TaskStatus.TIMED_OUT, TaskTimeoutError(task.id, timeout_ms), started_at)
                self._after_failure(task)
            await self._drain(task, body)
        except asyncio.CancelledError:
            if not body.done():
                body.cancel()
            raise
        finally:
            self.slots.release()

    async def _invoke(self, task: ScheduledTask[Any], token: CancellationToken) -> Any:
        if inspect.iscoroutinefunction(task.run):
            return await task.run(token)
        # Plain callables run in a worker thread.
        outcome = await asyncio.to_thread(task.run, token)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def _settle(self, task: ScheduledTask[Any], body: asyncio.Future[Any], started_at: datetime) -> None:
        finished_at = _now()
        duration_ms = _elapsed_ms(started_at, finished_at)
        metadata = MappingProxyType(dict(task.metadata))

        error: BaseException | None
        if body.cancelled():
            error = TaskCancelledError("task body was cancelled")
        else:
            error = body.exception()

        if error is not None:
            status = TaskStatus.CANCELLED if body.cancelled() else TaskStatus.FAILED
            result: TaskResult[Any] = TaskResult(
                task_id=task.id,
                status=status,
                success=False,
                failure_reason=str(error) or error.__class__.__name__,
                error=error,
                duration_ms=duration_ms,
                started_at=started_at,
                finished_at=finished_at,
                metadata=metadata,
            )
            self.results[task.id] = result
            logger.warning("scheduled_task_failed", task_id=task.id, error=result.failure_reason)
            self._fire("on_error", self.options.callbacks.on_error, task, error, duration_ms)
            self._after_failure(task)
            return

        value = body.result()
        try:
            success = bool(self.options.evaluate_success(value))
        except Exception as exc:  # noqa: BLE001
            logger.warning("scheduled_task_evaluation_failed", task_id=task.id, error=str(exc))
            success = False
        failure_reason = None
        if not success:
            try:
                failure_reason = self.options.describe_failure(value)
            except Exception as exc:  # noqa: BLE001
                failure_reason = f"Task reported an unsuccessful result ({exc})"

        result = TaskResult(
            task_id=task.id,
            status=TaskStatus.SUCCEEDED if success else TaskStatus.FAILED,
            success=success,
            value=value,
            failure_reason=failure_reason,
            duration_ms=duration_ms,
            started_at=started_at,
            finished_at=finished_at,
            metadata=metadata,
        )
        self.results[task.id] = result
        self._fire("on_complete", self.options.callbacks.on_complete, result)
        if not success:
            self._after_failure(task)

    def _record_abort(
        self,
        task: ScheduledTask[Any],
        status: TaskStatus,
        error: BaseException,
        started_at: datetime,
    ) -> None:
        finished_at = _now()
        duration_ms = _elapsed_ms(started_at, finished_at)
        self.results[task.id] = TaskResult(
            task_id=task.id,
            status=status,
            success=False,
            failure_reason=str(error),
            error=error,
            duration_ms=duration_ms,
            started_at=started_at,
            finished_at=finished_at,
            metadata=MappingProxyType(dict(task.metadata)),
        )
        self._fire("on_error", self.options.callbacks.on_error, task, error, duration_ms)

    async def _drain(self, task: ScheduledTask[Any], body: asyncio.Future[Any]) -> None:
        """Hold the slot until the body returns, cancelling it once the grace period runs out."""
        if not body.done():
            grace = self.options.cancel_grace_ms
            if grace is not None:
                done, _ = await asyncio.wait({body}, timeout=grace / 1000)
                if not done:
                    logger.warning("scheduled_task_force_cancelled", task_id=task.id, grace_ms=grace)
                    body.cancel()
            await asyncio.wait({body})
        if not body.cancelled() and body.exception() is not None:
            logger.debug("scheduled_task_drained_with_error", task_id=task.id, error=str(body.exception()))

    def _after_failure(self, task: ScheduledTask[Any]) -> None:
        if self.options.fail_fast and not self.abort.is_set():
            self._trigger_abort(f"fail_fast after task {task.id} failed")
            logger.warning("scheduler_fail_fast_triggered", task_id=task.id)

    def _trigger_abort(self, reason: str) -> None:
        if self.abort_reason is None:
            self.abort_reason = reason
        self.abort.set()

    def _fire(self, name: str, hook: Callable[..., Any] | None, *args: Any) -> None:
        if hook is None:
            return
        try:
            outcome = hook(*args)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scheduler_callback_failed", callback=name, error=str(exc))
            return
        if inspect.isawaitable(outcome):
            pending = asyncio.ensure_future(outcome)
            self.callback_tasks.add(pending)
            pending.add_done_callback(lambda future: self._callback_done(name, future))

    def _callback_done(self, name: str, future: asyncio.Future[Any]) -> None:
        self.callback_tasks.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("scheduler_callback_failed", callback=name, error=str(error))


class TaskScheduler:
    """Generic bounded-concurrency runner.

    The scheduler keeps no state between runs apart from the metrics of the most recent one.
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 5,
        timeout_ms: int | None = 1_800_000,
        fail_fast: bool = False,
        cancel_grace_ms: int | None = 2_000,
        evaluate_success: Callable[[Any], bool] | None = None,
        describe_failure: Callable[[Any], str] | None = None,
        callbacks: TaskCallbacks | None = None,
    ) -> None:
        self._defaults = _RunOptions(
            max_concurrency=max_concurrency,
            timeout_ms=timeout_ms,
            fail_fast=fail_fast,
            evaluate_success=evaluate_success or default_evaluate_success,
            describe_failure=describe_failure or default_describe_failure,
            callbacks=callbacks or TaskCallbacks(),
            cancel_grace_ms=cancel_grace_ms,
        )
        self._last_metrics = RunMetrics()

    @classmethod
    def from_settings(cls, settings: SchedulingSettings, **kwargs: Any) -> "TaskScheduler":
        return cls(
            max_concurrency=settings.max_concurrency,
            timeout_ms=settings.timeout_ms,
            fail_fast=settings.fail_fast,
            cancel_grace_ms=settings.cancel_grace_ms,
            **kwargs,
        )

    @property
    def max_concurrency(self) -> int:
        return self._defaults.max_concurrency

    async def run(
        self,
        tasks: Iterable[ScheduledTask[R]],
        options: SchedulerOptions | None = None,
    ) -> list[TaskResult[R]]:
        batch_tasks = list(tasks)
        seen: set[str] = set()
        for task in batch_tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id in batch: {task.id}")
            seen.add(task.id)

        resolved = self._defaults.merge(options)
        if not batch_tasks:
            self._last_metrics = RunMetrics()
            return []

        logger.info(
            "scheduler_run_started",
            tasks=len(batch_tasks),
            max_concurrency=resolved.max_concurrency,
            timeout_ms=resolved.timeout_ms,
            fail_fast=resolved.fail_fast,
        )
        results = await _Batch(batch_tasks, resolved).execute()
        metrics = RunMetrics.from_results(results)
        self._last_metrics = metrics
        logger.info(
            "scheduler_run_completed",
            total=metrics.total,
            succeeded=metrics.succeeded,
            failed=metrics.failed,
            timed_out=metrics.timed_out,
            cancelled=metrics.cancelled,
            total_duration_ms=round(metrics.total_duration_ms, 2),
        )
        return results  # type: ignore[return-value]

    def get_metrics(self) -> RunMetrics:
        return self._last_metrics


__all__ = [
    "RunMetrics",
    "ScheduledTask",
    "SchedulerOptions",
    "TaskBody",
    "TaskCallbacks",
    "TaskResult",
    "TaskScheduler",
    "default_describe_failure",
    "default_evaluate_success",
]
