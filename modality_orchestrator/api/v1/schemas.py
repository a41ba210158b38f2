"""API 响应数据模型定义，约束任务、结果与引擎状态等接口返回结构。"""

from __future__ import annotations

import base64
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from modality_orchestrator.domain.models import ProcessingResult
from modality_orchestrator.domain.task import ProcessingTask


class ResultResponse(BaseModel):
    """处理结果响应模型，二进制内容以 base64 返回。"""
    content: str | None
    binary_content_base64: str | None = None
    content_type: str
    confidence: float
    metadata: dict[str, Any]
    generated_at: datetime

    @classmethod
    def from_result(cls, result: ProcessingResult) -> "ResultResponse":
        encoded = base64.b64encode(result.binary_content).decode("ascii") if result.binary_content else None
        return cls(
            content=result.content,
            binary_content_base64=encoded,
            content_type=result.content_type,
            confidence=result.confidence,
            metadata=dict(result.metadata),
            generated_at=result.generated_at,
        )


class InputContentItem(BaseModel):
    file_name: str
    content_type: str
    modality: str
    size_bytes: int


class TaskResponse(BaseModel):
    """任务详情接口响应模型。"""
    task_id: str
    user_id: str
    status: str
    input_modality: str
    output_modality: str
    prompt: str
    language: str
    priority: int
    parameters: dict[str, str]
    inputs: list[InputContentItem]
    result: ResultResponse | None
    error_message: str | None
    processing_time_ms: int | None
    created_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_task(cls, task: ProcessingTask) -> "TaskResponse":
        return cls(
            task_id=task.id.value,
            user_id=task.user_id,
            status=task.status.value,
            input_modality=task.input_modality.code,
            output_modality=task.output_modality.code,
            prompt=task.prompt.content,
            language=task.prompt.language,
            priority=task.priority,
            parameters=dict(task.parameters),
            inputs=[
                InputContentItem(
                    file_name=item.file_name,
                    content_type=item.content_type,
                    modality=item.modality_type.code,
                    size_bytes=item.size,
                )
                for item in task.input_contents
            ],
            result=ResultResponse.from_result(task.result) if task.result is not None else None,
            error_message=task.error_message,
            processing_time_ms=task.processing_time_ms,
            created_at=task.created_at,
            completed_at=task.completed_at,
        )


class EngineInfoResponse(BaseModel):
    """引擎元数据接口响应模型。"""
    name: str
    priority: int
    healthy: bool
    supported_modalities: list[str]
    intent_aware: bool


class ModalityResponse(BaseModel):
    code: str
    display_name: str
    input_supported: bool
    output_supported: bool
    extensions: list[str]


class SystemStatusResponse(BaseModel):
    """系统状态接口响应模型。"""
    total_tasks: int
    status_counts: dict[str, int]
    system_healthy: bool
    available_engines: int
    engines: list[EngineInfoResponse]


class PurgeResponse(BaseModel):
    removed: int
