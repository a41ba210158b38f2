"""任务应用服务门面：处理任务创建、执行、流式输出、取消、重试、查询与过期清理。"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator

from modality_orchestrator.config import Settings
from modality_orchestrator.domain.enums import ProcessingStatus
from modality_orchestrator.domain.errors import (
    DomainError,
    InvalidInput,
    TaskCreationFailed,
    TaskNotFound,
    UnsupportedModality,
)
from modality_orchestrator.domain.events import DomainEvent
from modality_orchestrator.domain.models import (
    InputContent,
    ModalityType,
    ProcessingPrompt,
    ProcessingResult,
    ProcessingTaskId,
    utcnow,
)
from modality_orchestrator.domain.orchestrator import ProcessingOrchestrator
from modality_orchestrator.domain.repository import ProcessingTaskRepository
from modality_orchestrator.domain.task import MAX_PRIORITY, MIN_PRIORITY, ProcessingTask
from modality_orchestrator.infra.logging.context import bind_log_context


@dataclass(slots=True)
class UploadedFileData:
    """上传文件内存表示，保存名称、内容与 MIME 信息。"""
    filename: str
    content: bytes
    content_type: str | None


@dataclass(slots=True)
class CreateTaskCommand:
    """创建任务命令。prompt 为空时使用输入模态的默认提示词。"""
    input_modality: str
    output_modality: str
    prompt: str | None = None
    user_id: str | None = None
    language: str | None = None
    files: list[UploadedFileData] = field(default_factory=list)
    parameters: dict[str, str] = field(default_factory=dict)
    priority: int | None = None


logger = logging.getLogger(__name__)


class TaskApplicationService:
    """任务应用服务，衔接接口层、任务仓储与处理编排器。"""
    def __init__(
        self,
        *,
        settings: Settings,
        repository: ProcessingTaskRepository,
        orchestrator: ProcessingOrchestrator,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._orchestrator = orchestrator

    def create_task(self, command: CreateTaskCommand) -> ProcessingTask:
        """校验并创建任务；业务校验失败原样抛出，其余异常包装为 TaskCreationFailed，失败时不落库。"""
        try:
            task = self._build_task(command)
        except DomainError:
            raise
        except Exception as exc:
            logger.exception(
                "task creation failed",
                extra={"event": "task.create.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise TaskCreationFailed(f"failed to create task: {exc}") from exc

        self._repository.save(task)
        self._publish(task.pull_domain_events())
        return task

    async def create_and_process(self, command: CreateTaskCommand) -> ProcessingTask:
        task = self.create_task(command)
        return await self.process_task(task.id.value)

    async def process_task(self, task_id: str) -> ProcessingTask:
        """执行任务并返回最新任务状态；处理失败时任务已记录为 FAILED 后再抛出。"""
        task = self.get_task(task_id)
        with bind_log_context(task_id=task.id.value, user_id=task.user_id):
            try:
                await self._orchestrator.process_task(task)
            finally:
                self._publish_for(task.id)
        return self.get_task(task_id)

    async def stream_task(self, task_id: str) -> AsyncIterator[ProcessingResult]:
        """流式执行任务，逐个产出部分结果。"""
        task = self.get_task(task_id)
        stream = self._orchestrator.process_task_stream(task)
        try:
            async for chunk in stream:
                yield chunk
        finally:
            # 消费方提前断开时显式关闭内层序列，使任务及时转为取消状态
            await stream.aclose()
            self._publish_for(task.id)

    def cancel_task(self, task_id: str) -> ProcessingTask:
        """取消任务；已下发的引擎调用不会被中断。"""
        task = self.get_task(task_id)
        task.cancel()
        self._repository.save(task)
        logger.info("task cancelled", extra={"event": "task.cancelled", "task_id": task.id.value})
        return task

    async def retry_task(self, task_id: str) -> ProcessingTask:
        """将失败任务重置为待处理并重新执行。"""
        task = self.get_task(task_id)
        task.retry()
        self._repository.save(task)
        logger.info("task retried", extra={"event": "task.retried", "task_id": task.id.value})
        return await self.process_task(task_id)

    def get_task(self, task_id: str) -> ProcessingTask:
        task = self._repository.find_by_id(self._task_id(task_id))
        if task is None:
            raise TaskNotFound(f"task not found: {task_id}")
        return task

    def list_user_tasks(self, user_id: str, status: ProcessingStatus | None = None) -> list[ProcessingTask]:
        if status is None:
            return self._repository.find_by_user_id(user_id)
        return self._repository.find_by_user_id_and_status(user_id, status)

    def system_status(self) -> dict[str, Any]:
        """汇总各状态任务数量与引擎健康情况。"""
        counts = {status.value: self._repository.count_by_status(status) for status in ProcessingStatus}
        return {
            "total_tasks": self._repository.count(),
            "status_counts": counts,
            "system_healthy": self._orchestrator.is_system_healthy(),
            "available_engines": self._orchestrator.available_engine_count(),
            "engines": [asdict(info) for info in self._orchestrator.engine_infos()],
        }

    def purge_expired(self, now: datetime | None = None) -> int:
        """删除超过保留期的已完成任务，返回删除数量。"""
        before = (now or utcnow()) - timedelta(hours=self._settings.task_retention_hours)
        removed = self._repository.delete_completed_before(before)
        if removed:
            logger.info("expired tasks purged", extra={"event": "task.purged", "op": str(removed)})
        return removed

    def find_stuck_tasks(self, now: datetime | None = None) -> list[ProcessingTask]:
        """返回处理时间超过超时阈值仍未结束的任务。"""
        timeout_minutes = max(1, int(self._settings.task_timeout_seconds // 60))
        return self._repository.find_timeout_processing(timeout_minutes, now=now)

    # -- helpers -----------------------------------------------------------

    def _build_task(self, command: CreateTaskCommand) -> ProcessingTask:
        input_modality = self._modality(command.input_modality)
        output_modality = self._modality(command.output_modality)

        priority = self._settings.default_priority if command.priority is None else command.priority
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise InvalidInput(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")

        total_size = sum(len(item.content) for item in command.files)
        if total_size > self._settings.max_input_size_bytes:
            raise InvalidInput(f"total upload size exceeds limit: {total_size} bytes")

        prompt_text = (command.prompt or "").strip()
        if len(prompt_text) > self._settings.max_prompt_chars:
            raise InvalidInput(f"prompt content too long (max {self._settings.max_prompt_chars} characters)")
        prompt = ProcessingPrompt.of(prompt_text, command.language) if prompt_text else None

        contents = [
            InputContent.of(item.filename, item.content, item.content_type or "application/octet-stream")
            for item in command.files
        ]
        return ProcessingTask.create(
            user_id=command.user_id or self._settings.default_user_id,
            input_modality=input_modality,
            output_modality=output_modality,
            prompt=prompt,
            input_contents=contents,
            parameters=command.parameters,
            priority=priority,
        )

    @staticmethod
    def _modality(code: str) -> ModalityType:
        try:
            return ModalityType.from_code(code)
        except InvalidInput as exc:
            raise UnsupportedModality(f"unsupported modality: {code}") from exc

    @staticmethod
    def _task_id(task_id: str) -> ProcessingTaskId:
        try:
            return ProcessingTaskId.of(task_id)
        except InvalidInput as exc:
            raise TaskNotFound(f"task not found: {task_id}") from exc

    def _publish_for(self, task_id: ProcessingTaskId) -> None:
        task = self._repository.find_by_id(task_id)
        if task is not None:
            self._publish(task.pull_domain_events())

    @staticmethod
    def _publish(events: list[DomainEvent]) -> None:
        for event in events:
            logger.info(
                event.event_type,
                extra={
                    "event": event.event_type,
                    "task_id": event.task_id,
                    "user_id": event.user_id,
                    "payload_preview": asdict(event),
                },
            )
