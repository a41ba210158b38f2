"""处理编排器：意图优先、模态兜底地选择引擎，并驱动任务完成生命周期流转。"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncGenerator, AsyncIterator, Iterable

from modality_orchestrator.domain.engines import EngineInfo, IntentAwareEngine, ProcessingEngine
from modality_orchestrator.domain.enums import ProcessingStatus, UserIntent
from modality_orchestrator.domain.errors import NoSuitableEngine, ProcessingFailed, ProcessingTimeout
from modality_orchestrator.domain.intent.nlp import IntentRecognitionResult
from modality_orchestrator.domain.intent.recognizer import INTENT_PARAMETER, IntentRecognizer
from modality_orchestrator.domain.intent.strategies import IntentStrategyRegistry
from modality_orchestrator.domain.models import ProcessingResult
from modality_orchestrator.domain.repository import ProcessingTaskRepository
from modality_orchestrator.domain.task import ProcessingTask

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600.0
TIMEOUT_MESSAGE = "timeout"

PHASE_INTENT = "intent"
PHASE_MODALITY = "modality"


def _consume_outcome(future: asyncio.Future[Any]) -> None:
    # 取走被放弃调用的结果或异常
    if not future.cancelled():
        future.exception()


async def _next_chunk(stream: AsyncIterator[ProcessingResult]) -> ProcessingResult:
    return await stream.__anext__()


class ProcessingOrchestrator:
    """处理编排器。

    引擎列表按注册顺序遍历，首个满足条件者胜出；健康状态每次选择时重新读取。
    传入 repository 时，每次状态流转后都会保存任务。
    """
    def __init__(
        self,
        engines: Iterable[ProcessingEngine],
        intent_recognizer: IntentRecognizer,
        strategies: IntentStrategyRegistry,
        repository: ProcessingTaskRepository | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._engines: tuple[ProcessingEngine, ...] = tuple(engines)
        self._recognizer = intent_recognizer
        self._strategies = strategies
        self._repository = repository
        self._timeout_seconds = timeout_seconds

    @property
    def engines(self) -> tuple[ProcessingEngine, ...]:
        return self._engines

    # -- selection ---------------------------------------------------------

    async def select_engine(self, task: ProcessingTask) -> ProcessingEngine | None:
        intent = await self._recognizer.classify(task)
        engine, _phase = self._choose(task, intent)
        return engine

    def _choose(self, task: ProcessingTask, intent: UserIntent) -> tuple[ProcessingEngine | None, str | None]:
        strategy = self._strategies.get(intent.category)
        if strategy is not None:
            for engine in self._engines:
                # 意图匹配的引擎同样须支持任务的模态组合
                if strategy.supports(engine) and engine.supports(task) and engine.is_healthy():
                    return engine, PHASE_INTENT
        for engine in self._engines:
            if engine.supports(task) and engine.is_healthy():
                return engine, PHASE_MODALITY
        return None, None

    # -- processing --------------------------------------------------------

    async def process_task(self, task: ProcessingTask) -> ProcessingResult:
        """认领任务后识别意图、合并参数并选择引擎执行；失败时先记录到任务再抛出。

        同一任务的并发调用只有一个能认领成功，其余抛出 InvalidStatus。
        调用方取消时任务转为 CANCELLED，取消继续向上传播。
        """
        task = self._claim(task)
        engine: ProcessingEngine | None = None
        try:
            recognition = await self._recognizer.classify_with_parameters(task)
            task = self._merge_parameters(task, recognition)
            engine, phase = self._select_or_fail(task, recognition.intent)
            started = time.monotonic()
            result = await self._run_with_timeout(self._invoke(engine, task, recognition.intent, phase))
        except NoSuitableEngine:
            raise
        except asyncio.TimeoutError as exc:
            self._record_failure(task, TIMEOUT_MESSAGE, engine)
            raise ProcessingTimeout(
                f"task {task.id} timed out after {self._timeout_seconds:g}s", task=task
            ) from exc
        except asyncio.CancelledError:
            self._record_cancel(task, engine, "task processing cancelled by caller")
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._record_failure(task, message, engine)
            raise ProcessingFailed(message, task=task) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        task.complete(result, elapsed_ms)
        self._save(task)
        logger.info(
            "task completed",
            extra={
                "event": "task.completed",
                "task_id": task.id.value,
                "engine": engine.name,
                "duration_ms": elapsed_ms,
            },
        )
        return result

    async def process_task_stream(self, task: ProcessingTask) -> AsyncGenerator[ProcessingResult, None]:
        """流式处理：逐个产出部分结果，结束后以拼接文本完成任务。

        消费方提前关闭序列时任务被取消，但已发出的引擎调用不会被中断。
        单步等待超时后该步被放弃而非取消，引擎流随之不再关闭。
        """
        task = self._claim(task)
        engine: ProcessingEngine | None = None
        stream: AsyncIterator[ProcessingResult] | None = None
        step: asyncio.Future[ProcessingResult] | None = None
        chunks: list[ProcessingResult] = []
        try:
            recognition = await self._recognizer.classify_with_parameters(task)
            task = self._merge_parameters(task, recognition)
            engine, _phase = self._select_or_fail(task, recognition.intent)
            started = time.monotonic()
            deadline = started + self._timeout_seconds
            stream = engine.process_stream(task)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                step = asyncio.ensure_future(_next_chunk(stream))
                try:
                    chunk = await asyncio.wait_for(asyncio.shield(step), remaining)
                except StopAsyncIteration:
                    break
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    step.add_done_callback(_consume_outcome)
                    raise
                chunks.append(chunk)
                yield chunk
        except NoSuitableEngine:
            raise
        except asyncio.TimeoutError as exc:
            self._record_failure(task, TIMEOUT_MESSAGE, engine)
            raise ProcessingTimeout(f"task {task.id} stream timed out", task=task) from exc
        except (GeneratorExit, asyncio.CancelledError):
            self._record_cancel(task, engine, "task stream closed by consumer")
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._record_failure(task, message, engine)
            raise ProcessingFailed(message, task=task) from exc
        finally:
            # 仍在运行的一步占用着引擎流，此时不能关闭
            if stream is not None and (step is None or step.done()):
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

        if not chunks:
            self._record_failure(task, "engine produced no output", engine)
            raise ProcessingFailed("engine produced no output", task=task)
        final = self._join_chunks(chunks)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        task.complete(final, elapsed_ms)
        self._save(task)
        logger.info(
            "task stream completed",
            extra={
                "event": "task.completed",
                "task_id": task.id.value,
                "engine": engine.name,
                "duration_ms": elapsed_ms,
            },
        )

    # -- health ------------------------------------------------------------

    def available_engine_count(self) -> int:
        return sum(1 for engine in self._engines if engine.is_healthy())

    def is_system_healthy(self) -> bool:
        return any(engine.is_healthy() for engine in self._engines)

    def engine_infos(self) -> list[EngineInfo]:
        return [engine.describe() for engine in self._engines]

    # -- helpers -----------------------------------------------------------

    def _claim(self, task: ProcessingTask) -> ProcessingTask:
        """在仓储保存的实例上执行 PENDING -> PROCESSING，使认领对同一任务只成功一次。"""
        stored = self._repository.find_by_id(task.id) if self._repository is not None else None
        target = stored if stored is not None else task
        target.start()
        self._save(target)
        return target

    def _merge_parameters(self, task: ProcessingTask, recognition: IntentRecognitionResult) -> ProcessingTask:
        params = dict(task.parameters)
        params.update(recognition.parameters)
        params[INTENT_PARAMETER] = recognition.intent.value
        merged = task.with_parameters(params)
        self._save(merged)
        return merged

    def _select_or_fail(self, task: ProcessingTask, intent: UserIntent) -> tuple[ProcessingEngine, str]:
        engine, phase = self._choose(task, intent)
        if engine is None or phase is None:
            message = (
                f"no suitable engine for {task.input_modality.code}->{task.output_modality.code} "
                f"(intent={intent.value})"
            )
            task.fail(message)
            self._save(task)
            logger.warning(
                "no suitable engine",
                extra={"event": "orchestrator.engine.none", "task_id": task.id.value},
            )
            raise NoSuitableEngine(message, task=task)
        logger.info(
            "engine selected",
            extra={
                "event": "orchestrator.engine.selected",
                "task_id": task.id.value,
                "engine": engine.name,
                "op": phase,
            },
        )
        return engine, phase

    @staticmethod
    async def _invoke(
        engine: ProcessingEngine, task: ProcessingTask, intent: UserIntent, phase: str
    ) -> ProcessingResult:
        if phase == PHASE_INTENT and isinstance(engine, IntentAwareEngine):
            return await engine.process_with_intent(task, intent)
        return await engine.process(task)

    async def _run_with_timeout(self, coro: Any) -> ProcessingResult:
        job = asyncio.ensure_future(coro)
        try:
            return await asyncio.wait_for(asyncio.shield(job), self._timeout_seconds)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            job.add_done_callback(_consume_outcome)
            raise

    def _record_failure(self, task: ProcessingTask, message: str, engine: ProcessingEngine | None) -> None:
        # 已被取消的任务保持取消状态。
        if task.status is not ProcessingStatus.PROCESSING:
            return
        task.fail(message)
        self._save(task)
        logger.error(
            "task failed",
            extra={
                "event": "task.failed",
                "task_id": task.id.value,
                "engine": engine.name if engine is not None else None,
                "error": message,
            },
        )

    def _record_cancel(self, task: ProcessingTask, engine: ProcessingEngine | None, message: str) -> None:
        if task.status is not ProcessingStatus.PROCESSING:
            return
        task.cancel()
        self._save(task)
        logger.info(
            message,
            extra={
                "event": "task.cancelled",
                "task_id": task.id.value,
                "engine": engine.name if engine is not None else None,
            },
        )

    @staticmethod
    def _join_chunks(chunks: list[ProcessingResult]) -> ProcessingResult:
        text = "".join(chunk.content or "" for chunk in chunks)
        if text.strip():
            return ProcessingResult.text(text, metadata={"streamed": True, "chunks": len(chunks)})
        return chunks[-1]

    def _save(self, task: ProcessingTask) -> None:
        if self._repository is not None:
            self._repository.save(task)
