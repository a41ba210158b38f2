"""处理任务聚合根：持有不可变的身份字段，并通过流转方法维护生命周期状态。"""

from __future__ import annotations

import threading
from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Mapping

from modality_orchestrator.domain.enums import ProcessingStatus
from modality_orchestrator.domain.errors import InvalidInput, InvalidStatus, UnsupportedModality
from modality_orchestrator.domain.events import (
    DomainEvent,
    ProcessingTaskCompleted,
    ProcessingTaskCreated,
    ProcessingTaskFailed,
)
from modality_orchestrator.domain.models import (
    InputContent,
    ModalityType,
    ProcessingPrompt,
    ProcessingResult,
    ProcessingTaskId,
    utcnow,
)

MIN_PRIORITY = 0
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5

_ALL_BUT_COMPLETED = frozenset(status for status in ProcessingStatus if status is not ProcessingStatus.COMPLETED)


class ProcessingTask:
    """多模态处理任务。

    身份字段（id、用户、模态、提示词、输入、参数、优先级、创建时间）创建后不可变；
    状态、结果、错误信息、完成时间与耗时只能经由 start/complete/fail/retry/cancel 修改，
    每次流转在任务锁内完成一次状态比较与写入。
    """

    __slots__ = (
        "_id",
        "_user_id",
        "_input_modality",
        "_output_modality",
        "_prompt",
        "_input_contents",
        "_parameters",
        "_priority",
        "_created_at",
        "_status",
        "_result",
        "_error_message",
        "_completed_at",
        "_processing_time_ms",
        "_events",
        "_lock",
    )

    def __init__(
        self,
        *,
        task_id: ProcessingTaskId,
        user_id: str,
        input_modality: ModalityType,
        output_modality: ModalityType,
        prompt: ProcessingPrompt,
        input_contents: Iterable[InputContent],
        parameters: Mapping[str, str] | None,
        priority: int,
        created_at: datetime,
        status: ProcessingStatus = ProcessingStatus.PENDING,
        result: ProcessingResult | None = None,
        error_message: str | None = None,
        completed_at: datetime | None = None,
        processing_time_ms: int | None = None,
    ) -> None:
        self._id = task_id
        self._user_id = user_id
        self._input_modality = input_modality
        self._output_modality = output_modality
        self._prompt = prompt
        self._input_contents = tuple(input_contents)
        self._parameters = MappingProxyType(dict(parameters or {}))
        self._priority = priority
        self._created_at = created_at
        self._status = status
        self._result = result
        self._error_message = error_message
        self._completed_at = completed_at
        self._processing_time_ms = processing_time_ms
        self._events: list[DomainEvent] = []
        self._lock = threading.Lock()

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        input_modality: ModalityType,
        output_modality: ModalityType,
        prompt: ProcessingPrompt | None,
        input_contents: Iterable[InputContent] = (),
        parameters: Mapping[str, str] | None = None,
        priority: int = DEFAULT_PRIORITY,
        task_id: ProcessingTaskId | None = None,
    ) -> "ProcessingTask":
        """校验跨字段业务规则后创建任务，并记录 created 事件。"""
        contents = tuple(input_contents)
        if not user_id or not user_id.strip():
            raise InvalidInput("user id cannot be empty")
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise InvalidInput(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")
        if not input_modality.input_supported:
            raise UnsupportedModality(f"input modality not supported: {input_modality.code}")
        if not output_modality.output_supported:
            raise UnsupportedModality(f"output modality not supported: {output_modality.code}")

        if input_modality == ModalityType.TEXT:
            if not contents and prompt is None:
                raise InvalidInput("text processing requires input content or a prompt")
        elif not contents:
            raise InvalidInput(f"{input_modality.code} processing requires at least one input content")

        task = cls(
            task_id=task_id or ProcessingTaskId.generate(),
            user_id=user_id,
            input_modality=input_modality,
            output_modality=output_modality,
            prompt=prompt or ProcessingPrompt.default_for(input_modality),
            input_contents=contents,
            parameters=parameters,
            priority=priority,
            created_at=utcnow(),
        )
        task._events.append(
            ProcessingTaskCreated(
                task_id=task.id.value,
                user_id=user_id,
                input_modality=input_modality.code,
                output_modality=output_modality.code,
            )
        )
        return task

    def with_parameters(self, parameters: Mapping[str, str]) -> "ProcessingTask":
        """返回参数表替换后的新任务，身份字段与当前生命周期状态保持不变，不产生 created 事件。"""
        with self._lock:
            return ProcessingTask(
                task_id=self._id,
                user_id=self._user_id,
                input_modality=self._input_modality,
                output_modality=self._output_modality,
                prompt=self._prompt,
                input_contents=self._input_contents,
                parameters=parameters,
                priority=self._priority,
                created_at=self._created_at,
                status=self._status,
                result=self._result,
                error_message=self._error_message,
                completed_at=self._completed_at,
                processing_time_ms=self._processing_time_ms,
            )

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            self._require({ProcessingStatus.PENDING}, "start")
            self._status = ProcessingStatus.PROCESSING

    def complete(self, result: ProcessingResult, processing_time_ms: int) -> None:
        if result is None:
            raise InvalidInput("processing result cannot be empty")
        with self._lock:
            self._require({ProcessingStatus.PROCESSING}, "complete")
            self._status = ProcessingStatus.COMPLETED
            self._result = result
            self._error_message = None
            self._completed_at = utcnow()
            self._processing_time_ms = max(0, int(processing_time_ms))
            self._events.append(
                ProcessingTaskCompleted(
                    task_id=self._id.value,
                    user_id=self._user_id,
                    processing_time_ms=self._processing_time_ms,
                )
            )

    def fail(self, error_message: str) -> None:
        message = (error_message or "").strip() or "unknown error"
        with self._lock:
            self._require(_ALL_BUT_COMPLETED, "fail")
            self._status = ProcessingStatus.FAILED
            self._error_message = message
            self._completed_at = utcnow()
            self._events.append(
                ProcessingTaskFailed(task_id=self._id.value, user_id=self._user_id, error_message=message)
            )

    def retry(self) -> None:
        with self._lock:
            self._require({ProcessingStatus.FAILED}, "retry")
            self._status = ProcessingStatus.PENDING
            self._error_message = None
            self._result = None
            self._completed_at = None
            self._processing_time_ms = None

    def cancel(self) -> None:
        with self._lock:
            self._require(_ALL_BUT_COMPLETED, "cancel")
            self._status = ProcessingStatus.CANCELLED
            self._completed_at = utcnow()

    def _require(self, allowed: Iterable[ProcessingStatus], action: str) -> None:
        if self._status not in allowed:
            raise InvalidStatus(f"cannot {action} task {self._id} in status {self._status.value}")

    def pull_domain_events(self) -> list[DomainEvent]:
        """取出并清空尚未发布的领域事件。"""
        with self._lock:
            events, self._events = self._events, []
        return events

    # -- accessors ---------------------------------------------------------

    @property
    def id(self) -> ProcessingTaskId:
        return self._id

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def input_modality(self) -> ModalityType:
        return self._input_modality

    @property
    def output_modality(self) -> ModalityType:
        return self._output_modality

    @property
    def prompt(self) -> ProcessingPrompt:
        return self._prompt

    @property
    def input_contents(self) -> tuple[InputContent, ...]:
        return self._input_contents

    @property
    def parameters(self) -> Mapping[str, str]:
        return self._parameters

    @property
    def priority(self) -> int:
        return self._priority

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def status(self) -> ProcessingStatus:
        return self._status

    @property
    def result(self) -> ProcessingResult | None:
        return self._result

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def completed_at(self) -> datetime | None:
        return self._completed_at

    @property
    def processing_time_ms(self) -> int | None:
        return self._processing_time_ms

    @property
    def primary_input(self) -> InputContent | None:
        return self._input_contents[0] if self._input_contents else None

    def parameter(self, key: str, default: str | None = None) -> str | None:
        return self._parameters.get(key, default)

    def is_terminal(self) -> bool:
        return self._status.is_terminal()

    def can_be_retried(self) -> bool:
        return self._status.is_retryable()

    def total_input_size(self) -> int:
        return sum(item.size for item in self._input_contents)

    def input_text(self) -> str:
        """拼接提示词与文本类输入内容，供意图识别与文本引擎使用。"""
        parts = [self._prompt.content]
        for item in self._input_contents:
            if item.modality_type == ModalityType.TEXT:
                parts.append(item.content.decode("utf-8", errors="replace"))
        return "\n".join(part for part in parts if part.strip())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProcessingTask):
            return NotImplemented
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __repr__(self) -> str:
        return (
            f"ProcessingTask(id={self._id.value!r}, status={self._status.value!r}, "
            f"input={self._input_modality.code}, output={self._output_modality.code})"
        )
