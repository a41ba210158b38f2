"""意图支持策略：按意图大类判断某个引擎能否承接该类请求。"""

from __future__ import annotations

from abc import ABC, abstractmethod

from modality_orchestrator.domain.engines import ProcessingEngine
from modality_orchestrator.domain.enums import IntentCategory


class IntentSupportStrategy(ABC):
    """意图支持策略抽象。新增业务域时注册新的策略实例即可。"""

    @abstractmethod
    def intent_category(self) -> IntentCategory:
        """策略负责的意图大类。"""

    @abstractmethod
    def supports(self, engine: ProcessingEngine) -> bool:
        """判断引擎是否承接该意图大类。"""


class EngineTypeStrategy(IntentSupportStrategy):
    """专用策略：只匹配指定类型的引擎。"""
    def __init__(self, category: IntentCategory, engine_type: type[ProcessingEngine]) -> None:
        self._category = category
        self._engine_type = engine_type

    def intent_category(self) -> IntentCategory:
        return self._category

    def supports(self, engine: ProcessingEngine) -> bool:
        return isinstance(engine, self._engine_type)


class GeneralIntentStrategy(IntentSupportStrategy):
    """通用策略：匹配除专用引擎类型以外的所有引擎。"""
    def __init__(self, excluded_types: tuple[type[ProcessingEngine], ...] = ()) -> None:
        self._excluded_types = excluded_types

    def intent_category(self) -> IntentCategory:
        return IntentCategory.GENERAL

    def supports(self, engine: ProcessingEngine) -> bool:
        return not isinstance(engine, self._excluded_types) if self._excluded_types else True


class IntentStrategyRegistry:
    """按意图大类管理策略实例，同一大类后注册者覆盖先注册者。"""
    def __init__(self, strategies: list[IntentSupportStrategy] | None = None) -> None:
        self._strategies: dict[IntentCategory, IntentSupportStrategy] = {}
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: IntentSupportStrategy) -> None:
        self._strategies[strategy.intent_category()] = strategy

    def get(self, category: IntentCategory) -> IntentSupportStrategy | None:
        return self._strategies.get(category)

    def all(self) -> list[IntentSupportStrategy]:
        return list(self._strategies.values())
