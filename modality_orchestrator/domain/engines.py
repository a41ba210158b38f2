"""处理引擎抽象：约束模态支持判断、单次/流式执行、健康检查与耗时预估接口。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator

from modality_orchestrator.domain.enums import UserIntent
from modality_orchestrator.domain.models import ModalityType, ProcessingResult
from modality_orchestrator.domain.task import ProcessingTask


@dataclass(slots=True)
class EngineInfo:
    """引擎诊断信息，用于接口返回与健康展示。"""
    name: str
    priority: int
    healthy: bool
    supported_modalities: list[str]
    intent_aware: bool


class ProcessingEngine(ABC):
    """处理引擎抽象基类。priority 越小越优先，由组装方按此顺序注册。"""
    name: str
    priority: int = 100
    # (输入模态, 输出模态) 组合
    supported_pairs: tuple[tuple[ModalityType, ModalityType], ...] = ()

    def supports(self, task: ProcessingTask) -> bool:
        """判断引擎是否支持任务的输入/输出模态组合。"""
        return (task.input_modality, task.output_modality) in self.supported_pairs

    @abstractmethod
    async def process(self, task: ProcessingTask) -> ProcessingResult:
        """执行一次性处理并返回结果。"""

    async def process_stream(self, task: ProcessingTask) -> AsyncIterator[ProcessingResult]:
        """流式处理；默认包装 process 为单元素序列。"""
        yield await self.process(task)

    def estimate_processing_time(self, task: ProcessingTask) -> timedelta:
        return timedelta(seconds=5)

    def is_healthy(self) -> bool:
        return True

    def describe(self) -> EngineInfo:
        return EngineInfo(
            name=self.name,
            priority=self.priority,
            healthy=self.is_healthy(),
            supported_modalities=[f"{source.code}->{target.code}" for source, target in self.supported_pairs],
            intent_aware=isinstance(self, IntentAwareEngine),
        )


class IntentAwareEngine(ProcessingEngine):
    """提供按已识别意图处理入口的专用引擎。"""

    @abstractmethod
    async def process_with_intent(self, task: ProcessingTask, intent: UserIntent) -> ProcessingResult:
        """按给定意图执行处理。"""
