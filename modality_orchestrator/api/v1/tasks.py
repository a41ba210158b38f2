"""任务管理接口：创建任务、执行、流式订阅、取消、重试与查询。"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse

from modality_orchestrator.api.v1.schemas import ResultResponse, TaskResponse
from modality_orchestrator.application.container import get_task_service
from modality_orchestrator.application.task_service import (
    CreateTaskCommand,
    TaskApplicationService,
    UploadedFileData,
)
from modality_orchestrator.domain.enums import ProcessingStatus
from modality_orchestrator.domain.errors import (
    DomainError,
    InvalidInput,
    InvalidStatus,
    NoSuitableEngine,
    ProcessingFailed,
    ProcessingTimeout,
    TaskCreationFailed,
    TaskNotFound,
    UnsupportedModality,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# 子类需排在父类之前
_STATUS_BY_ERROR: tuple[tuple[type[DomainError], int], ...] = (
    (TaskNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidStatus, status.HTTP_409_CONFLICT),
    (UnsupportedModality, status.HTTP_400_BAD_REQUEST),
    (InvalidInput, status.HTTP_400_BAD_REQUEST),
    (NoSuitableEngine, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProcessingTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProcessingFailed, status.HTTP_502_BAD_GATEWAY),
    (TaskCreationFailed, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _service() -> TaskApplicationService:
    return get_task_service()


def _http_error(exc: DomainError) -> HTTPException:
    """将领域异常映射为 HTTP 异常，detail 中携带错误码与任务标识。"""
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail: dict[str, Any] = {"code": exc.code, "message": exc.message}
    if exc.task is not None:
        detail["task_id"] = exc.task.id.value
        detail["status"] = exc.task.status.value
    return HTTPException(status_code=status_code, detail=detail)


def _parse_parameters(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"invalid parameters JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="parameters must be a JSON object")
    return {str(key): str(value) for key, value in parsed.items() if value is not None}


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    input_modality: Annotated[str, Form(...)],
    output_modality: Annotated[str, Form(...)],
    prompt: Annotated[str | None, Form()] = None,
    user_id: Annotated[str | None, Form()] = None,
    language: Annotated[str | None, Form()] = None,
    priority: Annotated[int | None, Form()] = None,
    parameters: Annotated[str | None, Form()] = None,
    process: Annotated[bool, Form()] = False,
    files: Annotated[list[UploadFile] | None, File()] = None,
    service: TaskApplicationService = Depends(_service),
) -> TaskResponse:
    """解析表单与上传文件并创建任务；process=true 时同步执行。"""
    uploaded_files: list[UploadedFileData] = []
    for item in files or []:
        content = await item.read()
        uploaded_files.append(
            UploadedFileData(
                filename=item.filename or "upload.bin",
                content=content,
                content_type=item.content_type,
            )
        )
    command = CreateTaskCommand(
        input_modality=input_modality,
        output_modality=output_modality,
        prompt=prompt,
        user_id=user_id,
        language=language,
        files=uploaded_files,
        parameters=_parse_parameters(parameters),
        priority=priority,
    )
    logger.info(
        "create_task requested",
        extra={"event": "task.create.requested", "op": f"{input_modality}->{output_modality}"},
    )
    try:
        task = await asyncio.to_thread(service.create_task, command)
        if process:
            task = await service.process_task(task.id.value)
    except DomainError as exc:
        raise _http_error(exc) from exc
    return TaskResponse.from_task(task)


@router.post("/tasks/{task_id}/process", response_model=TaskResponse)
async def process_task(
    task_id: str,
    service: TaskApplicationService = Depends(_service),
) -> TaskResponse:
    """同步执行任务并返回最终状态。"""
    try:
        task = await service.process_task(task_id)
    except DomainError as exc:
        raise _http_error(exc) from exc
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_id}/stream")
async def stream_task(
    task_id: str,
    service: TaskApplicationService = Depends(_service),
) -> StreamingResponse:
    """通过 SSE 推送部分结果，结束时发送 done 或 error 事件。"""
    try:
        service.get_task(task_id)
    except DomainError as exc:
        raise _http_error(exc) from exc

    async def event_stream() -> Any:
        stream = service.stream_task(task_id)
        try:
            async for chunk in stream:
                payload = ResultResponse.from_result(chunk).model_dump(mode="json")
                yield "event: chunk\n"
                yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
        except DomainError as exc:
            payload = {"code": exc.code, "message": exc.message}
            yield "event: error\n"
            yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
            return
        finally:
            await stream.aclose()
        task = service.get_task(task_id)
        yield "event: done\n"
        yield f"data: {TaskResponse.from_task(task).model_dump_json()}\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.post("/tasks/{task_id}/cancel", response_model=TaskResponse)
def cancel_task(
    task_id: str,
    service: TaskApplicationService = Depends(_service),
) -> TaskResponse:
    try:
        task = service.cancel_task(task_id)
    except DomainError as exc:
        raise _http_error(exc) from exc
    return TaskResponse.from_task(task)


@router.post("/tasks/{task_id}/retry", response_model=TaskResponse)
async def retry_task(
    task_id: str,
    service: TaskApplicationService = Depends(_service),
) -> TaskResponse:
    """重试失败任务。"""
    try:
        task = await service.retry_task(task_id)
    except DomainError as exc:
        raise _http_error(exc) from exc
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: str,
    service: TaskApplicationService = Depends(_service),
) -> TaskResponse:
    try:
        task = service.get_task(task_id)
    except DomainError as exc:
        raise _http_error(exc) from exc
    return TaskResponse.from_task(task)


@router.get("/users/{user_id}/tasks", response_model=list[TaskResponse])
def list_user_tasks(
    user_id: str,
    task_status: Annotated[str | None, Query(alias="status")] = None,
    service: TaskApplicationService = Depends(_service),
) -> list[TaskResponse]:
    """按用户列出任务，可选按状态过滤，最新创建的在前。"""
    try:
        parsed_status = ProcessingStatus.from_code(task_status) if task_status else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [TaskResponse.from_task(task) for task in service.list_user_tasks(user_id, parsed_status)]
