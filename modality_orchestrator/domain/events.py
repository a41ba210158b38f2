"""处理任务领域事件：创建、完成与失败。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from modality_orchestrator.domain.models import utcnow


@dataclass(frozen=True, slots=True)
class ProcessingTaskCreated:
    task_id: str
    user_id: str
    input_modality: str
    output_modality: str
    occurred_at: datetime = field(default_factory=utcnow)

    event_type = "task.created"


@dataclass(frozen=True, slots=True)
class ProcessingTaskCompleted:
    task_id: str
    user_id: str
    processing_time_ms: int
    occurred_at: datetime = field(default_factory=utcnow)

    event_type = "task.completed"


@dataclass(frozen=True, slots=True)
class ProcessingTaskFailed:
    task_id: str
    user_id: str
    error_message: str
    occurred_at: datetime = field(default_factory=utcnow)

    event_type = "task.failed"


DomainEvent = ProcessingTaskCreated | ProcessingTaskCompleted | ProcessingTaskFailed
