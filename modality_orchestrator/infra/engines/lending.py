"""借阅业务引擎：按意图处理查看、搜索、借阅与归还请求。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from modality_orchestrator.domain.engines import IntentAwareEngine
from modality_orchestrator.domain.enums import UserIntent
from modality_orchestrator.domain.intent import extractors as params
from modality_orchestrator.domain.intent.extractors import LendingParameterExtractor
from modality_orchestrator.domain.intent.nlp import RuleBasedNlpEngine
from modality_orchestrator.domain.intent.recognizer import INTENT_PARAMETER
from modality_orchestrator.domain.models import ModalityType, ProcessingResult
from modality_orchestrator.domain.task import ProcessingTask

logger = logging.getLogger(__name__)

MAX_LISTED_BOOKS = 10
LIST_HINT = "以上是可借阅的书籍列表。如果您想借阅某本书，请告诉我书名或图书ID，以及您的学号和姓名。"
INCOMPLETE_BORROW_HINT = "请从以上可借阅书籍中选择一本，并提供图书名称或ID、学号和姓名以完成借阅。"
INCOMPLETE_RETURN_HINT = "请提供完整的归还信息，包括图书名称或ID和学号"


@dataclass(slots=True)
class Book:
    """图书条目。"""
    book_id: str
    title: str
    author: str
    category: str
    description: str = ""
    tags: tuple[str, ...] = ()
    available: bool = True


@dataclass(slots=True)
class BorrowRecord:
    """借阅记录，returned_at 为空表示尚未归还。"""
    record_id: str
    book_id: str
    student_id: str
    student_name: str
    borrowed_at: datetime
    returned_at: datetime | None = None


class LendingError(RuntimeError):
    """借阅业务规则失败：图书不存在、已借出或未找到借阅记录。"""


class LendingService(Protocol):
    def list_available(self) -> list[Book]: ...

    def search(self, keyword: str) -> list[Book]: ...

    def search_by_category(self, category: str) -> list[Book]: ...

    def find_id_by_title(self, title: str) -> str | None: ...

    def get_book(self, book_id: str) -> Book: ...

    def borrow(self, book_id: str, student_id: str, student_name: str) -> BorrowRecord: ...

    def return_book(self, book_id: str, student_id: str) -> BorrowRecord: ...


class LendingProcessingEngine(IntentAwareEngine):
    name = "LendingProcessingEngine"
    priority = 10
    supported_pairs = ((ModalityType.TEXT, ModalityType.TEXT),)

    def __init__(self, lending_service: LendingService) -> None:
        self._lending = lending_service
        self._extractor = LendingParameterExtractor()
        self._rules = RuleBasedNlpEngine()

    async def process(self, task: ProcessingTask) -> ProcessingResult:
        intent = UserIntent.parse(task.parameter(INTENT_PARAMETER)) or self._rules.classify(task.prompt.content)
        return await self.process_with_intent(task, intent)

    async def process_with_intent(self, task: ProcessingTask, intent: UserIntent) -> ProcessingResult:
        if intent is UserIntent.GENERAL_PROCESSING:
            intent = self._rules.classify(task.prompt.content)
        logger.debug("lending request dispatched: task_id=%s intent=%s", task.id, intent.value)

        if intent is UserIntent.ACTION_LIST:
            return self._with_hint(self._view_available(task), LIST_HINT)
        if intent is UserIntent.ACTION_EXECUTE:
            return self._borrow(task)
        if intent is UserIntent.RETURN_ACTION:
            return self._return(task)
        if intent is UserIntent.VIEW_AVAILABLE_ITEMS:
            return self._view_available(task)
        return self._search(task)

    def estimate_processing_time(self, task: ProcessingTask) -> timedelta:
        return timedelta(milliseconds=1500)

    # -- handlers ----------------------------------------------------------

    def _borrow(self, task: ProcessingTask) -> ProcessingResult:
        values = self._parameters(task)
        book_id = self._resolve_book_id(values)
        student_id = values.get(params.STUDENT_ID)
        student_name = values.get(params.STUDENT_NAME)
        if not (book_id and student_id and student_name):
            return self._with_hint(self._view_available(task), INCOMPLETE_BORROW_HINT)

        try:
            record = self._lending.borrow(book_id, student_id, student_name)
            book = self._lending.get_book(book_id)
        except LendingError as exc:
            logger.info("borrow rejected: task_id=%s book_id=%s reason=%s", task.id, book_id, exc)
            return ProcessingResult.text(f"借阅失败：{exc}。请检查图书名称或ID，或确认图书是否可借。", confidence=0.0)

        content = (
            f"借阅成功！\n图书名称: {book.title}\n图书ID: {book_id}\n学号: {student_id}\n姓名: {student_name}\n"
            f"借阅时间: {record.borrowed_at:%Y-%m-%d %H:%M:%S}"
        )
        return ProcessingResult.text(
            content,
            confidence=0.95,
            metadata={"taskId": task.id.value, "operation": "borrow", "bookId": book_id, "studentId": student_id},
        )

    def _return(self, task: ProcessingTask) -> ProcessingResult:
        values = self._parameters(task)
        book_id = self._resolve_book_id(values)
        student_id = values.get(params.STUDENT_ID)
        if not (book_id and student_id):
            return ProcessingResult.text(INCOMPLETE_RETURN_HINT, confidence=0.8)

        try:
            self._lending.return_book(book_id, student_id)
            book = self._lending.get_book(book_id)
        except LendingError as exc:
            logger.info("return rejected: task_id=%s book_id=%s reason=%s", task.id, book_id, exc)
            return ProcessingResult.text(f"归还失败：{exc}。请检查图书名称或ID，或确认图书状态。", confidence=0.0)

        return ProcessingResult.text(
            f"图书《{book.title}》归还成功",
            confidence=0.95,
            metadata={"taskId": task.id.value, "operation": "return", "bookId": book_id, "studentId": student_id},
        )

    def _view_available(self, task: ProcessingTask) -> ProcessingResult:
        books = self._lending.list_available()
        return ProcessingResult.text(
            self._format_available(books),
            confidence=0.95,
            metadata={"taskId": task.id.value, "operation": "view_available", "bookCount": len(books)},
        )

    def _search(self, task: ProcessingTask) -> ProcessingResult:
        values = self._parameters(task)
        if values.get(params.BOOK_TITLE):
            books = self._lending.search(values[params.BOOK_TITLE])
        elif values.get(params.CATEGORY):
            books = self._lending.search_by_category(values[params.CATEGORY])
        else:
            books = self._lending.search(task.prompt.content)
        return ProcessingResult.text(
            self._format_search(books),
            confidence=0.9,
            metadata={"taskId": task.id.value, "operation": "search", "bookCount": len(books)},
        )

    # -- helpers -----------------------------------------------------------

    def _parameters(self, task: ProcessingTask) -> dict[str, str]:
        # 任务参数优先，缺失字段再从提示词中补充提取
        values = self._extractor.extract(task.prompt.content)
        values.update({key: value for key, value in task.parameters.items() if value})
        return values

    def _resolve_book_id(self, values: dict[str, str]) -> str | None:
        if values.get(params.BOOK_ID):
            return values[params.BOOK_ID]
        title = values.get(params.BOOK_TITLE)
        return self._lending.find_id_by_title(title) if title else None

    @staticmethod
    def _with_hint(result: ProcessingResult, hint: str) -> ProcessingResult:
        return ProcessingResult.text(f"{result.content}\n\n{hint}", confidence=result.confidence, metadata=result.metadata)

    @staticmethod
    def _format_available(books: list[Book]) -> str:
        if not books:
            return "当前没有可借阅的图书。"
        lines = [f"当前可借阅的图书有 {len(books)} 本:", ""]
        for index, book in enumerate(books[:MAX_LISTED_BOOKS], start=1):
            lines.append(f"{index}. 《{book.title}》")
            lines.append(f"   作者: {book.author}")
            lines.append(f"   类别: {book.category}")
            lines.append(f"   图书ID: {book.book_id}")
            lines.append("")
        if len(books) > MAX_LISTED_BOOKS:
            lines.append(f"... 还有 {len(books) - MAX_LISTED_BOOKS} 本图书，可通过搜索功能查找更多。")
            lines.append("")
        lines.append("如需借阅，请告诉我书名或图书ID，以及您的学号和姓名。")
        return "\n".join(lines)

    @staticmethod
    def _format_search(books: list[Book]) -> str:
        if not books:
            return "未找到相关图书。"
        lines = [f"找到 {len(books)} 本相关图书:", ""]
        for index, book in enumerate(books, start=1):
            lines.append(f"{index}. 《{book.title}》")
            lines.append(f"   作者: {book.author}")
            lines.append(f"   类别: {book.category}")
            lines.append(f"   简介: {book.description}")
            lines.append(f"   状态: {'可借阅' if book.available else '已借出'}")
            lines.append(f"   图书ID: {book.book_id}")
            lines.append("")
        return "\n".join(lines).rstrip()
