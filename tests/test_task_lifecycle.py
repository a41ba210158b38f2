"""任务生命周期测试：覆盖创建校验、合法/非法流转、领域事件与并发流转。"""

from __future__ import annotations

import threading

import pytest

from conftest import text_task
from modality_orchestrator.domain.enums import ProcessingStatus
from modality_orchestrator.domain.errors import InvalidInput, InvalidStatus, UnsupportedModality
from modality_orchestrator.domain.events import (
    ProcessingTaskCompleted,
    ProcessingTaskCreated,
    ProcessingTaskFailed,
)
from modality_orchestrator.domain.models import InputContent, ModalityType, ProcessingPrompt, ProcessingResult
from modality_orchestrator.domain.task import ProcessingTask


def _image_task(**overrides) -> ProcessingTask:
    values = {
        "user_id": "u-1",
        "input_modality": ModalityType.IMAGE,
        "output_modality": ModalityType.TEXT,
        "prompt": None,
        "input_contents": [InputContent.of("cat.png", b"\x89PNG", "image/png")],
    }
    values.update(overrides)
    return ProcessingTask.create(**values)


def test_create_sets_defaults_and_records_event() -> None:
    task = _image_task()
    assert task.status is ProcessingStatus.PENDING
    assert task.priority == 5
    assert task.prompt.content == "请总结图片内容"
    assert task.result is None and task.error_message is None and task.completed_at is None
    events = task.pull_domain_events()
    assert len(events) == 1
    assert isinstance(events[0], ProcessingTaskCreated)
    assert events[0].input_modality == "IMAGE"
    assert task.pull_domain_events() == []


@pytest.mark.parametrize(
    ("overrides", "error"),
    [
        ({"user_id": " "}, InvalidInput),
        ({"priority": 11}, InvalidInput),
        ({"priority": -1}, InvalidInput),
        ({"input_contents": []}, InvalidInput),
        ({"output_modality": ModalityType.VIDEO}, UnsupportedModality),
        ({"output_modality": ModalityType.DOCUMENT}, UnsupportedModality),
    ],
)
def test_create_rejects_invalid_combinations(overrides, error) -> None:
    with pytest.raises(error):
        _image_task(**overrides)


def test_text_task_requires_prompt_or_content() -> None:
    with pytest.raises(InvalidInput):
        ProcessingTask.create(
            user_id="u-1",
            input_modality=ModalityType.TEXT,
            output_modality=ModalityType.TEXT,
            prompt=None,
        )
    task = ProcessingTask.create(
        user_id="u-1",
        input_modality=ModalityType.TEXT,
        output_modality=ModalityType.TEXT,
        prompt=None,
        input_contents=[InputContent.text("hello")],
    )
    assert task.prompt.content == "请处理输入内容"
    assert task.input_text() == "请处理输入内容\nhello"


def test_happy_path_start_complete() -> None:
    task = text_task("总结")
    task.pull_domain_events()
    task.start()
    assert task.status is ProcessingStatus.PROCESSING

    result = ProcessingResult.text("summary")
    task.complete(result, 120)

    assert task.status is ProcessingStatus.COMPLETED
    assert task.result is result
    assert task.processing_time_ms == 120
    assert task.completed_at is not None
    assert task.is_terminal()
    [event] = task.pull_domain_events()
    assert isinstance(event, ProcessingTaskCompleted)
    assert event.processing_time_ms == 120


def test_fail_then_retry_clears_outcome() -> None:
    task = text_task("总结")
    task.start()
    task.fail("  ")
    assert task.status is ProcessingStatus.FAILED
    assert task.error_message == "unknown error"
    assert task.can_be_retried()
    assert isinstance(task.pull_domain_events()[-1], ProcessingTaskFailed)

    task.retry()
    assert task.status is ProcessingStatus.PENDING
    assert task.error_message is None
    assert task.completed_at is None
    assert task.processing_time_ms is None


@pytest.mark.parametrize(
    ("prepare", "action"),
    [
        ([], "complete"),
        (["start"], "start"),
        (["start", "complete"], "fail"),
        (["start", "complete"], "cancel"),
        (["start", "complete"], "retry"),
        ([], "retry"),
        (["cancel"], "start"),
    ],
)
def test_illegal_transitions_raise_invalid_status(prepare: list[str], action: str) -> None:
    task = text_task("总结")
    result = ProcessingResult.text("done")
    steps = {
        "start": task.start,
        "complete": lambda: task.complete(result, 1),
        "fail": lambda: task.fail("x"),
        "cancel": task.cancel,
        "retry": task.retry,
    }
    for step in prepare:
        steps[step]()
    status_before = task.status

    with pytest.raises(InvalidStatus):
        steps[action]()
    assert task.status is status_before


def test_cancel_allowed_from_pending_processing_and_failed() -> None:
    for prepare in ([], ["start"], ["start", "fail"]):
        task = text_task("总结")
        if prepare:
            task.start()
        if "fail" in prepare:
            task.fail("boom")
        task.cancel()
        assert task.status is ProcessingStatus.CANCELLED
        assert task.completed_at is not None


def test_with_parameters_keeps_identity_and_state() -> None:
    task = text_task("总结", parameters={"a": "1"})
    task.start()
    replaced = task.with_parameters({"a": "2", "intent": "SEARCH_ITEMS"})

    assert replaced == task
    assert replaced.id == task.id
    assert replaced.status is ProcessingStatus.PROCESSING
    assert replaced.parameter("a") == "2"
    assert task.parameter("a") == "1"
    assert replaced.created_at == task.created_at
    assert replaced.pull_domain_events() == []


def test_parameters_are_read_only() -> None:
    task = text_task("总结", parameters={"a": "1"})
    with pytest.raises(TypeError):
        task.parameters["a"] = "2"


def test_concurrent_start_only_succeeds_once() -> None:
    """并发启动同一任务时只有一次流转成功。"""
    task = text_task("总结")
    barrier = threading.Barrier(8)
    outcomes: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            task.start()
            succeeded = True
        except InvalidStatus:
            succeeded = False
        with lock:
            outcomes.append(succeeded)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(True) == 1
    assert task.status is ProcessingStatus.PROCESSING


def test_total_input_size_and_primary_input() -> None:
    task = _image_task(
        input_contents=[
            InputContent.of("a.png", b"1234", "image/png"),
            InputContent.of("b.png", b"56", "image/png"),
        ],
        prompt=ProcessingPrompt.of("比较两张图"),
    )
    assert task.total_input_size() == 6
    assert task.primary_input.file_name == "a.png"
