"""领域异常定义：每类异常携带稳定的错误码，供接口层映射为响应。"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """领域异常基类。task 为处理阶段失败时已记录状态的任务，其余场景为 None。"""
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, task: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.task = task


class TaskNotFound(DomainError, LookupError):
    code = "TASK_NOT_FOUND"


class InvalidStatus(DomainError):
    """非法的生命周期流转。"""
    code = "INVALID_STATUS"


class InvalidInput(DomainError, ValueError):
    """创建任务或构造值对象时违反业务规则。"""
    code = "INVALID_INPUT"


class UnsupportedModality(DomainError, ValueError):
    code = "UNSUPPORTED_MODALITY"


class NoSuitableEngine(DomainError):
    code = "NO_SUITABLE_ENGINE"


class TaskCreationFailed(DomainError):
    """包装任务创建过程中的非预期底层异常。"""
    code = "TASK_CREATION_FAILED"


class ProcessingFailed(DomainError):
    """包装引擎执行阶段的失败。"""
    code = "PROCESSING_FAILED"


class ProcessingTimeout(ProcessingFailed):
    code = "PROCESSING_TIMEOUT"
