"""处理任务仓储契约：键值 CRUD 以及按用户、状态、模态、时间与优先级的查询。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from modality_orchestrator.domain.enums import ProcessingStatus
from modality_orchestrator.domain.models import ModalityType, ProcessingTaskId
from modality_orchestrator.domain.task import ProcessingTask


class ProcessingTaskRepository(ABC):
    """任务仓储抽象。列表查询按创建时间倒序返回，待处理队列按优先级升序、创建时间升序返回。"""

    @abstractmethod
    def find_by_id(self, task_id: ProcessingTaskId) -> ProcessingTask | None: ...

    @abstractmethod
    def find_all(self) -> list[ProcessingTask]: ...

    @abstractmethod
    def save(self, task: ProcessingTask) -> ProcessingTask: ...

    @abstractmethod
    def delete(self, task: ProcessingTask) -> None: ...

    @abstractmethod
    def delete_by_id(self, task_id: ProcessingTaskId) -> None: ...

    @abstractmethod
    def exists_by_id(self, task_id: ProcessingTaskId) -> bool: ...

    @abstractmethod
    def count(self) -> int: ...

    @abstractmethod
    def find_by_user_id(self, user_id: str) -> list[ProcessingTask]: ...

    @abstractmethod
    def find_by_status(self, status: ProcessingStatus) -> list[ProcessingTask]: ...

    @abstractmethod
    def find_by_modality_types(
        self, input_modality: ModalityType, output_modality: ModalityType
    ) -> list[ProcessingTask]: ...

    @abstractmethod
    def find_by_created_between(self, start: datetime, end: datetime) -> list[ProcessingTask]: ...

    @abstractmethod
    def find_pending_by_priority(self, max_priority: int, limit: int) -> list[ProcessingTask]:
        """返回优先级不高于 max_priority 的待处理任务。"""

    @abstractmethod
    def find_timeout_processing(self, timeout_minutes: int, now: datetime | None = None) -> list[ProcessingTask]:
        """返回创建时间早于超时阈值且仍在处理中的任务。"""

    @abstractmethod
    def find_by_user_id_and_status(self, user_id: str, status: ProcessingStatus) -> list[ProcessingTask]: ...

    @abstractmethod
    def count_by_status(self, status: ProcessingStatus) -> int: ...

    @abstractmethod
    def count_by_user_id(self, user_id: str) -> int: ...

    @abstractmethod
    def delete_completed_before(self, before: datetime) -> int:
        """删除在 before 之前完成的已完成任务，返回删除数量。"""
