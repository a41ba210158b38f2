"""内存任务仓储：单进程内的任务表，按任务 ID 做原子读写替换。"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable

from modality_orchestrator.domain.enums import ProcessingStatus
from modality_orchestrator.domain.models import ModalityType, ProcessingTaskId, utcnow
from modality_orchestrator.domain.repository import ProcessingTaskRepository
from modality_orchestrator.domain.task import ProcessingTask


def _newest_first(tasks: list[ProcessingTask]) -> list[ProcessingTask]:
    return sorted(tasks, key=lambda task: task.created_at, reverse=True)


class InMemoryProcessingTaskRepository(ProcessingTaskRepository):
    """内存任务仓储实现，不做持久化与崩溃恢复。"""
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, ProcessingTask] = {}

    def _select(self, predicate: Callable[[ProcessingTask], bool]) -> list[ProcessingTask]:
        with self._lock:
            return [task for task in self._tasks.values() if predicate(task)]

    def find_by_id(self, task_id: ProcessingTaskId) -> ProcessingTask | None:
        with self._lock:
            return self._tasks.get(task_id.value)

    def find_all(self) -> list[ProcessingTask]:
        return _newest_first(self._select(lambda task: True))

    def save(self, task: ProcessingTask) -> ProcessingTask:
        with self._lock:
            self._tasks[task.id.value] = task
        return task

    def delete(self, task: ProcessingTask) -> None:
        self.delete_by_id(task.id)

    def delete_by_id(self, task_id: ProcessingTaskId) -> None:
        with self._lock:
            self._tasks.pop(task_id.value, None)

    def exists_by_id(self, task_id: ProcessingTaskId) -> bool:
        with self._lock:
            return task_id.value in self._tasks

    def count(self) -> int:
        with self._lock:
            return len(self._tasks)

    def find_by_user_id(self, user_id: str) -> list[ProcessingTask]:
        return _newest_first(self._select(lambda task: task.user_id == user_id))

    def find_by_status(self, status: ProcessingStatus) -> list[ProcessingTask]:
        return _newest_first(self._select(lambda task: task.status is status))

    def find_by_modality_types(
        self, input_modality: ModalityType, output_modality: ModalityType
    ) -> list[ProcessingTask]:
        return _newest_first(
            self._select(
                lambda task: task.input_modality == input_modality and task.output_modality == output_modality
            )
        )

    def find_by_created_between(self, start: datetime, end: datetime) -> list[ProcessingTask]:
        return _newest_first(self._select(lambda task: start <= task.created_at <= end))

    def find_pending_by_priority(self, max_priority: int, limit: int) -> list[ProcessingTask]:
        pending = self._select(
            lambda task: task.status is ProcessingStatus.PENDING and task.priority <= max_priority
        )
        pending.sort(key=lambda task: (task.priority, task.created_at))
        return pending[: max(0, limit)]

    def find_timeout_processing(self, timeout_minutes: int, now: datetime | None = None) -> list[ProcessingTask]:
        threshold = (now or utcnow()) - timedelta(minutes=timeout_minutes)
        return _newest_first(
            self._select(lambda task: task.status is ProcessingStatus.PROCESSING and task.created_at < threshold)
        )

    def find_by_user_id_and_status(self, user_id: str, status: ProcessingStatus) -> list[ProcessingTask]:
        return _newest_first(self._select(lambda task: task.user_id == user_id and task.status is status))

    def count_by_status(self, status: ProcessingStatus) -> int:
        return len(self._select(lambda task: task.status is status))

    def count_by_user_id(self, user_id: str) -> int:
        return len(self._select(lambda task: task.user_id == user_id))

    def delete_completed_before(self, before: datetime) -> int:
        with self._lock:
            expired = [
                key
                for key, task in self._tasks.items()
                if task.status is ProcessingStatus.COMPLETED
                and task.completed_at is not None
                and task.completed_at < before
            ]
            for key in expired:
                del self._tasks[key]
        return len(expired)
