"""日志组件测试：脱敏、预览截断、上下文绑定与 DEBUG 放行规则。"""

from __future__ import annotations

import json
import logging

import pytest

from modality_orchestrator.infra.logging.context import bind_log_context, get_log_context
from modality_orchestrator.infra.logging.setup import (
    JsonLineFormatter,
    TaskLogFilter,
    mask_sensitive,
    preview_payload,
)


def _record(level: int = logging.INFO, name: str = "modality_orchestrator.domain.orchestrator", **extra) -> logging.LogRecord:
    record = logging.LogRecord(name, level, __file__, 1, "task %s", ("t-1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_standard_mode_masks_credentials_only() -> None:
    text = "Authorization: Bearer sk-abcdefgh1234 api_key=abc123 学号2021001"

    masked = mask_sensitive(text, "standard")

    assert "sk-abcdefgh1234" not in masked
    assert "abc123" not in masked
    assert "学号2021001" in masked
    assert mask_sensitive(text, "off") == text


def test_strict_mode_masks_borrower_identity() -> None:
    masked = mask_sensitive('{"studentId": "2021001", "studentName": "张三"} 学号2021001，姓名李四', "strict")

    assert "2021001" not in masked
    assert "张三" not in masked
    assert "李四" not in masked


def test_payload_preview_is_truncated() -> None:
    preview = preview_payload({"content": "x" * 50}, limit=20, mode="standard")

    assert preview.endswith("...(truncated)")
    assert len(preview) == 20 + len("...(truncated)")
    assert preview_payload(None, limit=20, mode="standard") is None


def test_bind_log_context_restores_previous_values() -> None:
    with bind_log_context(task_id="outer", engine="lending"):
        with bind_log_context(task_id="inner"):
            assert get_log_context()["task_id"] == "inner"
            assert get_log_context()["engine"] == "lending"
        assert get_log_context()["task_id"] == "outer"
    assert get_log_context()["task_id"] is None

    with pytest.raises(KeyError):
        with bind_log_context(job_id="x"):
            pass


def test_filter_routes_debug_by_module_or_task() -> None:
    log_filter = TaskLogFilter(
        level=logging.INFO,
        debug_modules={"modality_orchestrator.domain.intent"},
        debug_task_ids={"t-debug"},
    )

    assert log_filter.filter(_record(logging.WARNING))
    assert not log_filter.filter(_record(logging.DEBUG))
    assert log_filter.filter(_record(logging.DEBUG, name="modality_orchestrator.domain.intent.nlp"))
    assert not log_filter.filter(_record(logging.DEBUG, name="modality_orchestrator.domain.intentional"))
    with bind_log_context(task_id="t-debug"):
        assert log_filter.filter(_record(logging.DEBUG))


def test_formatter_emits_json_with_context_and_numbers() -> None:
    formatter = JsonLineFormatter(process_role="api", redaction_mode="standard", preview_chars=64)
    record = _record(event="task.completed", duration_ms="12", engine="lending")
    TaskLogFilter(level=logging.INFO, debug_modules=set(), debug_task_ids=set()).filter(record)

    entry = json.loads(formatter.format(record))

    assert entry["message"] == "task t-1"
    assert entry["event"] == "task.completed"
    assert entry["engine"] == "lending"
    assert entry["duration_ms"] == 12
    assert entry["process_role"] == "api"
    assert "request_id" not in entry
