from __future__ import annotations

import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from ..core.config import TrackingSettings
from ..core.logging import get_logger

logger = get_logger(name=__name__)

LogLevel = Literal["info", "warn", "error"]


class TrackedStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class TaskLogEntry:
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class TaskRecord:
    task_id: str
    mode: str
    agent_id: str | None = None
    provider: str | None = None
    prompt: str | None = None
    status: TrackedStatus = TrackedStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    duration_ms: float | None = None
    result: Any = None
    logs: list[TaskLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "mode": self.mode,
            "agent_id": self.agent_id,
            "provider": self.provider,
            "prompt": self.prompt,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "logs": [
                {"level": entry.level, "message": entry.message, "timestamp": entry.timestamp.isoformat()}
                for entry in self.logs
            ],
        }


class TaskTracker:
    """In-memory log of executed tasks, bounded to ``max_records`` entries.

    Records are process-local and never persisted.
    """

    def __init__(self, *, max_records: int = 500) -> None:
        if max_records < 1:
            raise ValueError("max_records must be positive")
        self._max_records = max_records
        self._records: OrderedDict[str, TaskRecord] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: TrackingSettings) -> "TaskTracker | None":
        if not settings.enabled:
            return None
        return cls(max_records=settings.max_records)

    def __len__(self) -> int:
        return len(self._records)

    def create(
        self,
        *,
        mode: str,
        agent_id: str | None = None,
        provider: str | None = None,
        prompt: str | None = None,
    ) -> str:
        task_id = f"task_{uuid.uuid4().hex[:12]}"
        self._records[task_id] = TaskRecord(
            task_id=task_id,
            mode=mode,
            agent_id=agent_id,
            provider=provider,
            prompt=prompt,
        )
        while len(self._records) > self._max_records:
            evicted, _ = self._records.popitem(last=False)
            logger.debug("task_record_evicted", task_id=evicted)
        logger.debug("task_record_created", task_id=task_id, mode=mode, provider=provider)
        return task_id

    def add_log(self, task_id: str, *, level: LogLevel, message: str) -> None:
        record = self._records.get(task_id)
        if record is None:
            logger.warning("task_record_missing", task_id=task_id, operation="add_log")
            return
        record.logs.append(TaskLogEntry(level=level, message=message))

    def complete(self, task_id: str, *, result: Any, success: bool) -> TaskRecord | None:
        record = self._records.get(task_id)
        if record is None:
            logger.warning("task_record_missing", task_id=task_id, operation="complete")
            return None
        record.finished_at = datetime.now(timezone.utc)
        record.status = TrackedStatus.COMPLETED if success else TrackedStatus.FAILED
        record.result = result
        record.duration_ms = (record.finished_at - record.started_at).total_seconds() * 1000
        return record

    def get(self, task_id: str) -> TaskRecord | None:
        return self._records.get(task_id)

    def list(
        self,
        *,
        status: TrackedStatus | None = None,
        provider: str | None = None,
    ) -> list[TaskRecord]:
        records = list(self._records.values())
        if status is not None:
            records = [record for record in records if record.status is status]
        if provider is not None:
            records = [record for record in records if record.provider == provider]
        return records

    def clear(self) -> None:
        self._records.clear()


__all__ = ["TaskLogEntry", "TaskRecord", "TaskTracker", "TrackedStatus"]
