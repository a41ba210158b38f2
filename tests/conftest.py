"""测试公共桩对象：可控的处理引擎、模型补全桩与任务构造辅助函数。"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import pytest

from modality_orchestrator.domain.engines import IntentAwareEngine, ProcessingEngine
from modality_orchestrator.domain.enums import IntentCategory, UserIntent
from modality_orchestrator.domain.intent.recognizer import IntentRecognizer
from modality_orchestrator.domain.intent.strategies import (
    EngineTypeStrategy,
    GeneralIntentStrategy,
    IntentStrategyRegistry,
)
from modality_orchestrator.domain.models import InputContent, ModalityType, ProcessingPrompt, ProcessingResult
from modality_orchestrator.domain.orchestrator import ProcessingOrchestrator
from modality_orchestrator.domain.task import ProcessingTask
from modality_orchestrator.infra.repository.memory import InMemoryProcessingTaskRepository

TEXT_TO_TEXT = ((ModalityType.TEXT, ModalityType.TEXT),)


class StubEngine(ProcessingEngine):
    """测试用通用引擎桩：可配置健康状态、延迟、异常与流式分片。"""
    def __init__(
        self,
        name: str = "stub",
        pairs: tuple[tuple[ModalityType, ModalityType], ...] = TEXT_TO_TEXT,
        *,
        healthy: bool = True,
        delay: float = 0.0,
        error: Exception | None = None,
        chunks: list[str] | None = None,
    ) -> None:
        self.name = name
        self.supported_pairs = pairs
        self.healthy = healthy
        self.delay = delay
        self.error = error
        self.chunks = chunks or []
        self.calls: list[str] = []
        self.stream_closed = False

    async def process(self, task: ProcessingTask) -> ProcessingResult:
        self.calls.append(task.id.value)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProcessingResult.text(f"{self.name}:done")

    async def process_stream(self, task: ProcessingTask) -> AsyncIterator[ProcessingResult]:
        self.calls.append(task.id.value)
        try:
            for chunk in self.chunks:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield ProcessingResult.text(chunk, metadata={"partial": True})
            if self.error is not None:
                raise self.error
        finally:
            self.stream_closed = True

    def is_healthy(self) -> bool:
        return self.healthy


class StubLendingEngine(IntentAwareEngine):
    """测试用专用引擎桩：记录收到的意图与调用入口。"""
    def __init__(self, name: str = "lending", *, healthy: bool = True) -> None:
        self.name = name
        self.supported_pairs = TEXT_TO_TEXT
        self.healthy = healthy
        self.intents: list[UserIntent] = []
        self.plain_calls = 0

    async def process(self, task: ProcessingTask) -> ProcessingResult:
        self.plain_calls += 1
        return ProcessingResult.text(f"{self.name}:plain")

    async def process_with_intent(self, task: ProcessingTask, intent: UserIntent) -> ProcessingResult:
        self.intents.append(intent)
        return ProcessingResult.text(f"{self.name}:{intent.value}")

    def is_healthy(self) -> bool:
        return self.healthy


class CompleterStub:
    """测试用模型补全桩。"""
    def __init__(self, response: str | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[list[dict[str, Any]], str | None]] = []

    async def complete(self, messages: list[dict[str, Any]], model: str | None = None) -> str:
        self.calls.append((messages, model))
        if self.error is not None:
            raise self.error
        return self.response or ""


def text_task(prompt: str, parameters: dict[str, str] | None = None, user_id: str = "u-1") -> ProcessingTask:
    return ProcessingTask.create(
        user_id=user_id,
        input_modality=ModalityType.TEXT,
        output_modality=ModalityType.TEXT,
        prompt=ProcessingPrompt.of(prompt),
        parameters=parameters,
    )


def video_task() -> ProcessingTask:
    return ProcessingTask.create(
        user_id="u-1",
        input_modality=ModalityType.VIDEO,
        output_modality=ModalityType.TEXT,
        prompt=None,
        input_contents=[InputContent.of("clip.mp4", b"\x00\x01video", "video/mp4")],
    )


def strategy_registry() -> IntentStrategyRegistry:
    return IntentStrategyRegistry(
        [
            EngineTypeStrategy(IntentCategory.LENDING, StubLendingEngine),
            GeneralIntentStrategy(excluded_types=(StubLendingEngine,)),
        ]
    )


def build_orchestrator(
    engines: list[ProcessingEngine],
    repository: InMemoryProcessingTaskRepository | None = None,
    timeout_seconds: float = 5.0,
) -> ProcessingOrchestrator:
    return ProcessingOrchestrator(
        engines=engines,
        intent_recognizer=IntentRecognizer(),
        strategies=strategy_registry(),
        repository=repository,
        timeout_seconds=timeout_seconds,
    )


@pytest.fixture
def repository() -> InMemoryProcessingTaskRepository:
    return InMemoryProcessingTaskRepository()
