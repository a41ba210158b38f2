"""NLP 引擎：模型驱动的意图识别，以及模型不可用时的关键词规则兜底。"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol

from modality_orchestrator.domain.enums import UserIntent
from modality_orchestrator.domain.intent.extractors import ParameterExtractorManager
from modality_orchestrator.domain.intent.parsing import parse_intent_response
from modality_orchestrator.domain.intent.prompt import IntentPromptTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IntentRecognitionResult:
    """意图识别结果：意图标签、提取参数与来源（override / model / rules）。"""
    intent: UserIntent
    parameters: dict[str, str] = field(default_factory=dict)
    source: str = "rules"

    def parameter(self, key: str) -> str | None:
        return self.parameters.get(key)

    def has_parameter(self, key: str) -> bool:
        return bool(self.parameters.get(key))


class ChatCompleter(Protocol):
    async def complete(self, messages: list[dict[str, Any]], model: str | None = None) -> str: ...


class NlpEngine(ABC):
    """NLP 引擎抽象。"""

    @abstractmethod
    async def recognize(self, text: str) -> IntentRecognitionResult:
        """识别意图并提取参数。"""

    async def recognize_intent(self, text: str) -> UserIntent:
        return (await self.recognize(text)).intent


def _words(*words: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(re.escape(word) for word in words) + r")\b", re.IGNORECASE)


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(needle in text for needle in needles)


_ACTION_CN = ("借阅", "借")
_ACTION_EN = _words("borrow", "borrowing", "lend", "check out")
_BROWSE_CN = ("查看", "列表", "看看", "浏览", "有哪些", "有什么")
_BROWSE_EN = _words("list", "browse", "show", "view")
_AVAILABILITY_CN = ("可以借", "能借", "可借")
_AVAILABILITY_EN = _words("can i borrow", "what books", "which books", "available")
_RETURN_CN = ("归还", "还书")
_RETURN_EN = _words("return", "returning", "give back")
_BARE_RETURN_CN = re.compile(r"还(?![有是要没可能在])")
_VIEW_CN = ("查看", "所有", "推荐", "浏览", "看看", "有哪些", "有什么")
_VIEW_EN = _words("list", "browse", "show", "view", "recommend", "all books")
_DOMAIN_CN = ("书", "图书", "书籍")
_DOMAIN_EN = _words("book", "books", "library", "novel", "novels")
_TITLE = re.compile(r"[《\"“].+?[》\"”]")


class RuleBasedNlpEngine(NlpEngine):
    """关键词规则意图识别，结果确定、无外部依赖。

    判定顺序：
    1. 借阅动词 + 浏览动词 -> ACTION_LIST
    2. 询问可借范围且未指明书名 -> VIEW_AVAILABLE_ITEMS
    3. 借阅动词 -> ACTION_EXECUTE
    4. 归还动词 -> RETURN_ACTION
    5. 浏览/推荐类词 -> VIEW_AVAILABLE_ITEMS
    6. 其余 -> SEARCH_ITEMS（规则层不产出 GENERAL_PROCESSING）
    """
    def __init__(self, extractor_manager: ParameterExtractorManager | None = None) -> None:
        self._extractors = extractor_manager or ParameterExtractorManager()

    async def recognize(self, text: str) -> IntentRecognitionResult:
        return IntentRecognitionResult(self.classify(text), self._extractors.extract(text), source="rules")

    def classify(self, text: str) -> UserIntent:
        raw = text or ""
        lowered = raw.lower()
        has_title = bool(_TITLE.search(raw))
        has_domain_noun = _contains_any(lowered, _DOMAIN_CN) or bool(_DOMAIN_EN.search(lowered)) or has_title
        has_action = _contains_any(lowered, _ACTION_CN) or bool(_ACTION_EN.search(lowered))
        has_browse = _contains_any(lowered, _BROWSE_CN) or bool(_BROWSE_EN.search(lowered))
        asks_availability = _contains_any(lowered, _AVAILABILITY_CN) or bool(_AVAILABILITY_EN.search(lowered))

        if has_action and has_browse:
            return UserIntent.ACTION_LIST
        if asks_availability and not has_title:
            return UserIntent.VIEW_AVAILABLE_ITEMS
        if has_action:
            return UserIntent.ACTION_EXECUTE
        if self._is_return(lowered, has_domain_noun):
            return UserIntent.RETURN_ACTION
        if _contains_any(lowered, _VIEW_CN) or bool(_VIEW_EN.search(lowered)):
            return UserIntent.VIEW_AVAILABLE_ITEMS
        return UserIntent.SEARCH_ITEMS

    @staticmethod
    def _is_return(lowered: str, has_domain_noun: bool) -> bool:
        if _contains_any(lowered, _RETURN_CN):
            return True
        if _RETURN_EN.search(lowered) and has_domain_noun:
            return True
        # 单字"还"歧义较大，仅在出现图书相关名词时视为归还
        return has_domain_noun and bool(_BARE_RETURN_CN.search(lowered))


class ModelBackedNlpEngine(NlpEngine):
    """模型驱动的意图识别：模型调用异常时整体回退到规则识别。

    模型参数与规则提取参数合并，同名键以规则提取结果为准。
    """
    def __init__(
        self,
        client: ChatCompleter,
        extractor_manager: ParameterExtractorManager | None = None,
        template: IntentPromptTemplate | None = None,
        model: str | None = None,
        fallback: NlpEngine | None = None,
    ) -> None:
        self._client = client
        self._extractors = extractor_manager or ParameterExtractorManager()
        self._template = template or IntentPromptTemplate()
        self._model = model
        self._fallback = fallback or RuleBasedNlpEngine(self._extractors)

    async def recognize(self, text: str) -> IntentRecognitionResult:
        try:
            response = await self._client.complete(
                [{"role": "user", "content": self._template.render(text)}],
                model=self._model,
            )
        except Exception as exc:
            logger.warning(
                "intent model unavailable, falling back to rules",
                extra={
                    "event": "intent.model.fallback",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return await self._fallback.recognize(text)

        intent, model_params = parse_intent_response(response)
        rule_params = self._extractors.extract(text)
        return IntentRecognitionResult(intent, {**model_params, **rule_params}, source="model")
