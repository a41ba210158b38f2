"""API 总路由配置，按业务域注册 tasks 与 engines 子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from modality_orchestrator.api.v1.engines import router as engines_router
from modality_orchestrator.api.v1.tasks import router as tasks_router
from modality_orchestrator.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(tasks_router, tags=["tasks"])
api_router.include_router(engines_router, tags=["engines"])
