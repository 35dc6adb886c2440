"""Dispatch mention-addressed task requests to pluggable agent providers."""

from .orchestration import (
    BatchResult,
    CancellationToken,
    Orchestrator,
    TaskScheduler,
    parse_mentions,
)

__version__ = "0.1.0"

__all__ = [
    "BatchResult",
    "CancellationToken",
    "Orchestrator",
    "TaskScheduler",
    "parse_mentions",
    "__version__",
]
