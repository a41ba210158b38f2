"""依赖容器模块，负责单例化创建仓储、模型客户端、引擎、编排器与应用服务对象。"""

from __future__ import annotations

import logging
from functools import lru_cache

from modality_orchestrator.application.task_service import TaskApplicationService
from modality_orchestrator.config import get_settings
from modality_orchestrator.domain.engines import ProcessingEngine
from modality_orchestrator.domain.enums import IntentCategory
from modality_orchestrator.domain.intent.extractors import ParameterExtractorManager
from modality_orchestrator.domain.intent.nlp import ModelBackedNlpEngine, NlpEngine, RuleBasedNlpEngine
from modality_orchestrator.domain.intent.recognizer import IntentRecognizer
from modality_orchestrator.domain.intent.strategies import (
    EngineTypeStrategy,
    GeneralIntentStrategy,
    IntentStrategyRegistry,
)
from modality_orchestrator.domain.orchestrator import ProcessingOrchestrator
from modality_orchestrator.infra.engines.chat import ChatCompletionEngine
from modality_orchestrator.infra.engines.lending import LendingProcessingEngine
from modality_orchestrator.infra.lending.memory import InMemoryLendingService
from modality_orchestrator.infra.llm.client import ChatCompletionClient, LlmCredentials
from modality_orchestrator.infra.repository.memory import InMemoryProcessingTaskRepository

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_repository() -> InMemoryProcessingTaskRepository:
    """获取任务仓储单例。"""
    return InMemoryProcessingTaskRepository()


@lru_cache(maxsize=1)
def get_lending_service() -> InMemoryLendingService:
    return InMemoryLendingService()


@lru_cache(maxsize=1)
def get_llm_client() -> ChatCompletionClient:
    """获取模型客户端单例。"""
    settings = get_settings()
    return ChatCompletionClient(
        base_url=settings.llm_base_url,
        credentials=LlmCredentials(api_key=settings.llm_api_key),
        default_model=settings.llm_model,
        timeout_seconds=settings.llm_request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_extractor_manager() -> ParameterExtractorManager:
    return ParameterExtractorManager()


@lru_cache(maxsize=1)
def get_nlp_engine() -> NlpEngine:
    """获取 NLP 引擎单例；未配置模型凭据时直接使用规则识别。"""
    settings = get_settings()
    rules = RuleBasedNlpEngine(get_extractor_manager())
    if not settings.llm_api_key:
        logger.info("llm api key missing, intent recognition uses rules only", extra={"event": "intent.rules.only"})
        return rules
    return ModelBackedNlpEngine(
        get_llm_client(),
        extractor_manager=get_extractor_manager(),
        model=settings.intent_model or settings.llm_model,
        fallback=rules,
    )


@lru_cache(maxsize=1)
def get_engines() -> tuple[ProcessingEngine, ...]:
    """获取引擎列表，按优先级从高到低注册。"""
    settings = get_settings()
    engines: list[ProcessingEngine] = [
        LendingProcessingEngine(get_lending_service()),
        ChatCompletionEngine(
            get_llm_client(),
            text_model=settings.llm_model,
            vision_model=settings.llm_vision_model,
        ),
    ]
    return tuple(sorted(engines, key=lambda engine: engine.priority))


@lru_cache(maxsize=1)
def get_strategy_registry() -> IntentStrategyRegistry:
    return IntentStrategyRegistry(
        [
            EngineTypeStrategy(IntentCategory.LENDING, LendingProcessingEngine),
            GeneralIntentStrategy(excluded_types=(LendingProcessingEngine,)),
        ]
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> ProcessingOrchestrator:
    """获取处理编排器单例。"""
    settings = get_settings()
    return ProcessingOrchestrator(
        engines=get_engines(),
        intent_recognizer=IntentRecognizer(get_nlp_engine()),
        strategies=get_strategy_registry(),
        repository=get_repository(),
        timeout_seconds=settings.task_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_task_service() -> TaskApplicationService:
    """获取任务应用服务单例。"""
    return TaskApplicationService(
        settings=get_settings(),
        repository=get_repository(),
        orchestrator=get_orchestrator(),
    )


async def shutdown_container_resources() -> None:
    """关闭共享客户端并清理依赖容器缓存。"""
    if get_llm_client.cache_info().currsize:
        await get_llm_client().aclose()

    # 按依赖顺序清理缓存，确保后续请求可重新构建全新实例。
    for provider in (
        get_task_service,
        get_orchestrator,
        get_strategy_registry,
        get_engines,
        get_nlp_engine,
        get_extractor_manager,
        get_llm_client,
        get_lending_service,
        get_repository,
    ):
        provider.cache_clear()
