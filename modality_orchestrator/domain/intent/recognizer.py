"""意图识别器：优先采用任务显式给出的 intent 参数，否则委托 NLP 引擎。"""

from __future__ import annotations

import logging

from modality_orchestrator.domain.enums import UserIntent
from modality_orchestrator.domain.intent.nlp import IntentRecognitionResult, NlpEngine, RuleBasedNlpEngine
from modality_orchestrator.domain.task import ProcessingTask

logger = logging.getLogger(__name__)

INTENT_PARAMETER = "intent"


class IntentRecognizer:
    """意图识别器。"""
    def __init__(self, nlp_engine: NlpEngine | None = None) -> None:
        self._nlp_engine = nlp_engine or RuleBasedNlpEngine()

    async def classify(self, task: ProcessingTask) -> UserIntent:
        override = self._override(task)
        if override is not None:
            return override
        return await self._nlp_engine.recognize_intent(task.prompt.content)

    async def classify_with_parameters(self, task: ProcessingTask) -> IntentRecognitionResult:
        """识别意图与参数；显式 intent 参数命中时直接沿用任务参数（去掉 intent 本身）。"""
        override = self._override(task)
        if override is not None:
            params = {key: value for key, value in task.parameters.items() if key != INTENT_PARAMETER}
            return IntentRecognitionResult(override, params, source="override")

        result = await self._nlp_engine.recognize(task.prompt.content)
        logger.info(
            "intent recognized",
            extra={
                "event": "intent.recognized",
                "op": result.source,
                "intent": result.intent.value,
                "task_id": task.id.value,
            },
        )
        return result

    @staticmethod
    def _override(task: ProcessingTask) -> UserIntent | None:
        value = task.parameter(INTENT_PARAMETER)
        if not value:
            return None
        intent = UserIntent.parse(value)
        if intent is None:
            logger.debug("ignoring unknown intent parameter: %s", value)
        return intent
