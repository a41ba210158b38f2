"""通用对话引擎：通过 Chat Completions 处理文本与图像到文本的任务。"""

from __future__ import annotations

import base64
from datetime import timedelta
from typing import Any, AsyncIterator

from modality_orchestrator.domain.engines import ProcessingEngine
from modality_orchestrator.domain.models import ModalityType, ProcessingResult
from modality_orchestrator.domain.task import ProcessingTask
from modality_orchestrator.infra.llm.client import ChatCompletionClient


class ChatCompletionEngine(ProcessingEngine):
    name = "ChatCompletionEngine"
    priority = 50
    supported_pairs = (
        (ModalityType.TEXT, ModalityType.TEXT),
        (ModalityType.IMAGE, ModalityType.TEXT),
    )

    def __init__(self, client: ChatCompletionClient, text_model: str | None = None, vision_model: str | None = None) -> None:
        self._client = client
        self._text_model = text_model
        self._vision_model = vision_model

    async def process(self, task: ProcessingTask) -> ProcessingResult:
        model = self._model_for(task)
        content = await self._client.complete(self._messages(task), model=model)
        return ProcessingResult.text(content, metadata={"engine": self.name, "model": model or self._client.default_model})

    async def process_stream(self, task: ProcessingTask) -> AsyncIterator[ProcessingResult]:
        model = self._model_for(task)
        async for delta in self._client.stream(self._messages(task), model=model):
            yield ProcessingResult.text(delta, metadata={"engine": self.name, "partial": True})

    def estimate_processing_time(self, task: ProcessingTask) -> timedelta:
        words = len(task.prompt.content.split())
        return timedelta(milliseconds=max(1000, words * 100))

    def is_healthy(self) -> bool:
        return self._client.configured

    def _model_for(self, task: ProcessingTask) -> str | None:
        if task.input_modality == ModalityType.IMAGE:
            return self._vision_model
        return self._text_model

    @staticmethod
    def _messages(task: ProcessingTask) -> list[dict[str, Any]]:
        if task.input_modality == ModalityType.IMAGE:
            parts: list[dict[str, Any]] = [{"type": "text", "text": task.prompt.content}]
            for item in task.input_contents:
                encoded = base64.b64encode(item.content).decode("ascii")
                parts.append({"type": "image_url", "image_url": {"url": f"data:{item.content_type};base64,{encoded}"}})
            return [{"role": "user", "content": parts}]
        return [{"role": "user", "content": task.input_text()}]
