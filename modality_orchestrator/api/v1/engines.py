"""引擎与系统状态接口：列出处理引擎、支持的模态，汇总系统健康与任务统计。"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from modality_orchestrator.api.v1.schemas import (
    EngineInfoResponse,
    ModalityResponse,
    PurgeResponse,
    SystemStatusResponse,
)
from modality_orchestrator.application.container import get_task_service
from modality_orchestrator.application.task_service import TaskApplicationService
from modality_orchestrator.domain.models import ModalityType

router = APIRouter()


def _service() -> TaskApplicationService:
    return get_task_service()


@router.get("/engines", response_model=list[EngineInfoResponse])
def list_engines(service: TaskApplicationService = Depends(_service)) -> list[EngineInfoResponse]:
    """按选择顺序返回已注册引擎及其当前健康状态。"""
    return [EngineInfoResponse(**item) for item in service.system_status()["engines"]]


@router.get("/modalities", response_model=list[ModalityResponse])
def list_modalities() -> list[ModalityResponse]:
    return [
        ModalityResponse(
            code=modality.code,
            display_name=modality.display_name,
            input_supported=modality.input_supported,
            output_supported=modality.output_supported,
            extensions=sorted(modality.extensions),
        )
        for modality in ModalityType.predefined()
    ]


@router.get("/system/status", response_model=SystemStatusResponse)
def system_status(service: TaskApplicationService = Depends(_service)) -> SystemStatusResponse:
    return SystemStatusResponse(**service.system_status())


@router.post("/system/purge", response_model=PurgeResponse)
def purge_expired_tasks(service: TaskApplicationService = Depends(_service)) -> PurgeResponse:
    """删除超过保留期的已完成任务。"""
    return PurgeResponse(removed=service.purge_expired())
