"""
Orchestration Package

Components that turn an instruction into a batch of provider calls:
- Mention parsing
- Provider permission normalization
- Provider resolution with fallback
- Bounded-concurrency scheduling with cooperative cancellation
- Batch orchestration and in-memory task tracking
"""

from .cancellation import CancellationToken
from .enums import BatchStatus, ResolutionOutcome, TaskStatus
from .mentions import MentionParser, ParsedMentions, TaskDescriptor, parse_mentions
from .permissions import (
    ModePermissions,
    NormalizedPermissions,
    PermissionNormalizer,
    PermissionTable,
    normalize_permissions,
)
from .resolver import ProviderResolver, ResolvedProvider, candidate_order
from .scheduler import (
    RunMetrics,
    ScheduledTask,
    SchedulerOptions,
    TaskCallbacks,
    TaskResult,
    TaskScheduler,
)
from .tracking import TaskRecord, TaskTracker, TrackedStatus
from .orchestrator import AgentTaskResult, BatchResult, Orchestrator, PerformanceReport

__all__ = [
    # Cancellation
    "CancellationToken",
    # Enums
    "BatchStatus",
    "ResolutionOutcome",
    "TaskStatus",
    # Mentions
    "MentionParser",
    "ParsedMentions",
    "TaskDescriptor",
    "parse_mentions",
    # Permissions
    "ModePermissions",
    "NormalizedPermissions",
    "PermissionNormalizer",
    "PermissionTable",
    "normalize_permissions",
    # Resolution
    "ProviderResolver",
    "ResolvedProvider",
    "candidate_order",
    # Scheduling
    "RunMetrics",
    "ScheduledTask",
    "SchedulerOptions",
    "TaskCallbacks",
    "TaskResult",
    "TaskScheduler",
    # Tracking
    "TaskRecord",
    "TaskTracker",
    "TrackedStatus",
    # Orchestration
    "AgentTaskResult",
    "BatchResult",
    "Orchestrator",
    "PerformanceReport",
]
