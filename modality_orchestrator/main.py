"""服务入口：装配 FastAPI 应用、请求日志中间件与健康检查。"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from modality_orchestrator.api.router import api_router
from modality_orchestrator.application.container import get_orchestrator, shutdown_container_resources
from modality_orchestrator.config import get_settings
from modality_orchestrator.infra.logging.context import bind_log_context
from modality_orchestrator.infra.logging.setup import configure_logging, shutdown_logging

REQUEST_ID_HEADER = "X-Request-Id"
USER_ID_HEADER = "X-User-Id"

settings = get_settings()
configure_logging(settings, process_role="api")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """启动时构建编排器并逐个报告引擎健康状况；退出时释放模型客户端与日志线程。"""
    orchestrator = get_orchestrator()
    for info in orchestrator.engine_infos():
        logger.info(
            "engine registered",
            extra={"event": "api.startup.engine", "engine": info.name, "op": "healthy" if info.healthy else "unhealthy"},
        )
    if not orchestrator.is_system_healthy():
        logger.warning("no healthy engine at startup", extra={"event": "api.startup.degraded"})
    try:
        yield
    finally:
        logger.info("api shutting down", extra={"event": "api.shutdown"})
        await shutdown_container_resources()
        shutdown_logging()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

_origins = settings.cors_allowed_origins_list()
if _origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins,
        allow_methods=settings.cors_allowed_methods_list(),
        allow_headers=settings.cors_allowed_headers_list(),
        allow_credentials=settings.cors_allow_credentials,
    )


@app.middleware("http")
async def request_log_scope(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """为每个请求绑定 request_id 与调用方 user_id，结束时记录一条访问日志并回写请求 ID。"""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    route = f"{request.method} {request.url.path}"
    started = time.perf_counter()
    status_code = 500
    with bind_log_context(request_id=request_id, user_id=request.headers.get(USER_ID_HEADER)):
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as exc:
            logger.exception(
                "unhandled error",
                extra={"event": "http.request.failed", "op": route, "error_type": type(exc).__name__},
            )
            raise
        finally:
            logger.info(
                "%s -> %s",
                route,
                status_code,
                extra={
                    "event": "http.request",
                    "op": route,
                    "status_code": status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.get("/health")
def health() -> dict[str, object]:
    """任一引擎健康即为 ok，否则 degraded。"""
    orchestrator = get_orchestrator()
    return {
        "status": "ok" if orchestrator.is_system_healthy() else "degraded",
        "available_engines": orchestrator.available_engine_count(),
    }


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(api_router)
