from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

TASK_EVENT_TOTAL = Counter(
    "agent_dispatch_task_event_total",
    "Count of scheduled task lifecycle events (started/completed/failed/timed_out/cancelled)",
    labelnames=("provider", "event"),
)

TASK_LATENCY_SECONDS = Histogram(
    "agent_dispatch_task_latency_seconds",
    "Latency of individual dispatched tasks",
    labelnames=("provider", "status"),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, 1800, float("inf")),
)

TASKS_ACTIVE_GAUGE = Gauge(
    "agent_dispatch_tasks_active",
    "Dispatched tasks currently holding a scheduler slot",
    labelnames=("provider",),
)

PROVIDER_RESOLUTION_TOTAL = Counter(
    "agent_dispatch_provider_resolution_total",
    "Provider resolution outcomes (primary/fallback/unavailable)",
    labelnames=("outcome",),
)

BATCH_RUNS_TOTAL = Counter(
    "agent_dispatch_batch_runs_total",
    "Total batches by final status",
    labelnames=("status",),
)

BATCH_LATENCY_SECONDS = Histogram(
    "agent_dispatch_batch_latency_seconds",
    "End-to-end batch runtime",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, 1800, float("inf")),
)

BATCH_TASKS = Histogram(
    "agent_dispatch_batch_tasks",
    "Number of tasks parsed per batch",
    buckets=(0, 1, 2, 3, 4, 5, 8, 13, 21),
)

PARSE_WARNINGS_TOTAL = Counter(
    "agent_dispatch_parse_warnings_total",
    "Mention parse warnings (unknown agents)",
)


def increment_task_event(*, provider: str, event: str) -> None:
    TASK_EVENT_TOTAL.labels(provider=provider, event=event).inc()


def observe_task_latency(*, provider: str, status: str, latency: float) -> None:
    TASK_LATENCY_SECONDS.labels(provider=provider, status=status).observe(max(0.0, latency))


def mark_task_active(*, provider: str) -> None:
    TASKS_ACTIVE_GAUGE.labels(provider=provider).inc()


def mark_task_inactive(*, provider: str) -> None:
    TASKS_ACTIVE_GAUGE.labels(provider=provider).dec()


def record_provider_resolution(*, outcome: str) -> None:
    PROVIDER_RESOLUTION_TOTAL.labels(outcome=outcome).inc()


def record_batch_run(*, status: str, latency: float, tasks: int) -> None:
    BATCH_RUNS_TOTAL.labels(status=status).inc()
    BATCH_LATENCY_SECONDS.observe(max(0.0, latency))
    BATCH_TASKS.observe(tasks)


def increment_parse_warnings(*, count: int = 1) -> None:
    if count > 0:
        PARSE_WARNINGS_TOTAL.inc(count)
