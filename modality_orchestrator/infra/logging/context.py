"""日志上下文：按字段名维护 ContextVar，透传请求、任务、用户与引擎标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

CONTEXT_KEYS = ("request_id", "task_id", "user_id", "engine")

_VARS: dict[str, ContextVar[str | None]] = {
    key: ContextVar(f"mo_log_{key}", default=None) for key in CONTEXT_KEYS
}


def get_log_context() -> dict[str, str | None]:
    return {key: var.get() for key, var in _VARS.items()}


@contextmanager
def bind_log_context(**fields: str | None) -> Iterator[None]:
    """在 with 范围内绑定日志字段，退出时按相反顺序恢复；未知字段名直接报错。"""
    unknown = set(fields) - set(_VARS)
    if unknown:
        raise KeyError(f"unknown log context fields: {sorted(unknown)}")
    tokens = [(_VARS[key], _VARS[key].set(value)) for key, value in fields.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
