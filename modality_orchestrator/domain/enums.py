"""领域枚举定义：统一任务生命周期状态、意图分类与意图标签取值。"""

from __future__ import annotations

from enum import Enum


class ProcessingStatus(str, Enum):
    """处理任务生命周期状态枚举。"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_code(cls, code: str) -> "ProcessingStatus":
        """按状态编码（大小写不敏感，兼容枚举名）解析状态。"""
        normalized = (code or "").strip().lower()
        for status in cls:
            if status.value == normalized:
                return status
        raise ValueError(f"unknown processing status: {code}")

    def is_terminal(self) -> bool:
        return self in {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED}

    def is_active(self) -> bool:
        return self in {ProcessingStatus.PENDING, ProcessingStatus.PROCESSING}

    def is_retryable(self) -> bool:
        return self is ProcessingStatus.FAILED


class IntentCategory(str, Enum):
    """意图大类，每个大类对应一个意图支持策略。"""
    LENDING = "lending"
    GENERAL = "general"


class UserIntent(str, Enum):
    """用户意图标签，闭集；新增意图需同时新增对应策略。"""
    VIEW_AVAILABLE_ITEMS = "VIEW_AVAILABLE_ITEMS"
    SEARCH_ITEMS = "SEARCH_ITEMS"
    ACTION_LIST = "ACTION_LIST"
    ACTION_EXECUTE = "ACTION_EXECUTE"
    RETURN_ACTION = "RETURN_ACTION"
    GENERAL_PROCESSING = "GENERAL_PROCESSING"

    @property
    def category(self) -> IntentCategory:
        if self is UserIntent.GENERAL_PROCESSING:
            return IntentCategory.GENERAL
        return IntentCategory.LENDING

    @classmethod
    def parse(cls, value: str | None) -> "UserIntent | None":
        """将任意字符串解析为意图标签；无法识别时返回 None。"""
        if not value:
            return None
        normalized = value.strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            # 兼容借阅场景的历史标签名，模型偶尔会返回旧标签。
            return _LEGACY_ALIASES.get(normalized)


_LEGACY_ALIASES: dict[str, UserIntent] = {
    "VIEW_AVAILABLE_BOOKS": UserIntent.VIEW_AVAILABLE_ITEMS,
    "SEARCH_BOOKS": UserIntent.SEARCH_ITEMS,
    "BORROW_BOOK_LIST": UserIntent.ACTION_LIST,
    "BORROW_BOOK_ACTION": UserIntent.ACTION_EXECUTE,
    "RETURN_BOOK": UserIntent.RETURN_ACTION,
}
