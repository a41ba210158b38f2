"""日志初始化：JSON 行格式、队列异步落盘、按模块或任务放行 DEBUG，以及凭据与借阅人信息脱敏。

根 logger 只挂一个 QueueHandler，文件与 stderr 输出由 QueueListener 在后台线程完成。
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextlib import suppress
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from modality_orchestrator.config import Settings
from modality_orchestrator.infra.logging.context import CONTEXT_KEYS, get_log_context

SERVICE_NAME = "modality-orchestrator"

REDACTION_OFF = "off"
REDACTION_STANDARD = "standard"
REDACTION_STRICT = "strict"

# 模型服务凭据
_CREDENTIAL_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)(authorization[\"']?\s*[:=]\s*[\"']?bearer\s+)[^\s,;\"']+"), r"\1***"),
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]{8,}"), r"\1***"),
    (re.compile(r"(?i)(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\s,;\"']+"), r"\1***"),
    (re.compile(r"\bsk-[A-Za-z0-9\-]{8,}"), "sk-***"),
)

# strict 模式额外隐去借阅人身份信息
_PERSONAL_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)([\"']?student(?:Id|Name)[\"']?\s*[:=]\s*[\"']?)[^,;}\"']+"), r"\1***"),
    (re.compile(r"(学号\s*[:：]?\s*)\d+"), r"\1***"),
    (re.compile(r"(姓名\s*[:：]?\s*)[一-龥A-Za-z·]+"), r"\1***"),
)

_EXTRA_FIELDS = ("event", "op", "intent", "error_type")
_NUMERIC_FIELDS = ("duration_ms", "status_code")

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None


def mask_sensitive(text: str, mode: str) -> str:
    mode = (mode or REDACTION_STANDARD).lower()
    if mode == REDACTION_OFF:
        return text
    for pattern, replacement in _CREDENTIAL_PATTERNS:
        text = pattern.sub(replacement, text)
    if mode == REDACTION_STRICT:
        for pattern, replacement in _PERSONAL_PATTERNS:
            text = pattern.sub(replacement, text)
    return text


def preview_payload(payload: Any, *, limit: int, mode: str) -> str | None:
    """序列化并脱敏 payload，超出 limit 的部分截断。"""
    if payload is None:
        return None
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, default=str)
    text = mask_sensitive(text, mode)
    return text if len(text) <= limit else f"{text[:limit]}...(truncated)"


def _as_number(value: Any) -> int | float | None:
    if value is None or isinstance(value, (int, float)):
        return value
    with suppress(ValueError):
        return float(value)
    return None


class TaskLogFilter(logging.Filter):
    """入队前补齐上下文字段，并决定低于阈值的记录是否放行。

    DEBUG 记录仅在其模块位于 debug_modules 之下，或所属任务位于 debug_task_ids 中时保留。
    """

    def __init__(self, *, level: int, debug_modules: set[str], debug_task_ids: set[str]) -> None:
        super().__init__()
        self._level = level
        self._debug_modules = tuple(debug_modules)
        self._debug_task_ids = frozenset(debug_task_ids)

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_log_context()
        for key in CONTEXT_KEYS:
            if getattr(record, key, None) is None:
                setattr(record, key, context[key])

        if record.levelno >= self._level:
            return True
        if record.levelno > logging.DEBUG:
            return False
        if any(record.name == name or record.name.startswith(name + ".") for name in self._debug_modules):
            return True
        return getattr(record, "task_id", None) in self._debug_task_ids


class JsonLineFormatter(logging.Formatter):
    """每条记录输出一行 JSON，值为 None 的字段省略。"""

    def __init__(self, *, process_role: str, redaction_mode: str, preview_chars: int) -> None:
        super().__init__()
        self._process_role = process_role
        self._redaction_mode = redaction_mode
        self._preview_chars = preview_chars

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "process_role": self._process_role,
            "module": record.name,
            "message": mask_sensitive(record.getMessage(), self._redaction_mode),
        }
        for key in (*CONTEXT_KEYS, *_EXTRA_FIELDS):
            entry[key] = getattr(record, key, None)
        for key in _NUMERIC_FIELDS:
            entry[key] = _as_number(getattr(record, key, None))

        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)
        if error is not None:
            entry["error"] = mask_sensitive(str(error), self._redaction_mode)
        entry["payload_preview"] = preview_payload(
            getattr(record, "payload_preview", None),
            limit=self._preview_chars,
            mode=self._redaction_mode,
        )
        return json.dumps({key: value for key, value in entry.items() if value is not None}, ensure_ascii=False)


def _level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _log_file(settings: Settings, process_role: str) -> Path:
    root = settings.log_dir if settings.log_dir.is_absolute() else Path.cwd() / settings.log_dir
    root.mkdir(parents=True, exist_ok=True)
    return root / f"{process_role}.jsonl"


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """安装队列日志管线并返回 JSONL 文件路径；重复调用会先拆除上一次的管线。"""
    global _listener, _queue_handler
    shutdown_logging()

    log_file = _log_file(settings, process_role)
    formatter = JsonLineFormatter(
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        preview_chars=settings.log_payload_preview_chars,
    )
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    records: SimpleQueue[logging.LogRecord] = SimpleQueue()
    _queue_handler = QueueHandler(records)
    _queue_handler.addFilter(
        TaskLogFilter(
            level=_level(settings.log_level),
            debug_modules=set(settings.log_debug_modules_list()),
            debug_task_ids=set(settings.log_debug_task_ids_list()),
        )
    )
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(_queue_handler)

    _listener = QueueListener(records, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return log_file


def shutdown_logging() -> None:
    """摘除队列 handler，刷新并关闭后台输出。"""
    global _listener, _queue_handler
    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None
    if _listener is None:
        return
    listener, _listener = _listener, None
    listener.stop()
    for handler in listener.handlers:
        with suppress(OSError):
            handler.close()
