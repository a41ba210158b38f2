"""内存版借阅服务：演示用图书目录与借阅记录，进程重启后数据丢失。"""

from __future__ import annotations

import threading
from uuid import uuid4

from modality_orchestrator.domain.models import utcnow
from modality_orchestrator.infra.engines.lending import Book, BorrowRecord, LendingError


def sample_catalogue() -> list[Book]:
    """返回演示用图书目录。"""
    return [
        Book("1", "Java核心技术", "Cay S. Horstmann", "编程",
             "《Java核心技术》是Java领域最有影响力和价值的著作之一", ("Java", "编程", "计算机科学")),
        Book("2", "Spring实战", "Craig Walls", "编程",
             "《Spring实战》通过大量示例讲解了Spring框架的使用", ("Spring", "Java", "框架")),
        Book("3", "设计模式", "Gang of Four", "编程",
             "《设计模式》是软件开发领域经典著作，介绍了23种设计模式", ("设计模式", "面向对象", "软件工程"),
             available=False),
        Book("4", "算法导论", "Thomas H. Cormen", "数学",
             "《算法导论》提供了对算法和数据结构的深入理解", ("算法", "数据结构", "数学")),
        Book("5", "Intro to Algorithms", "Thomas H. Cormen", "数学",
             "English edition of the classic algorithms textbook", ("algorithms", "data structures")),
    ]


class InMemoryLendingService:
    """线程安全的内存借阅服务。"""
    def __init__(self, books: list[Book] | None = None) -> None:
        self._lock = threading.RLock()
        self._books: dict[str, Book] = {book.book_id: book for book in (books if books is not None else sample_catalogue())}
        self._records: list[BorrowRecord] = []

    def list_available(self) -> list[Book]:
        with self._lock:
            return [book for book in self._books.values() if book.available]

    def search(self, keyword: str) -> list[Book]:
        needle = (keyword or "").strip().lower()
        with self._lock:
            books = list(self._books.values())
        if not needle:
            return books
        return [
            book
            for book in books
            if needle in book.title.lower()
            or needle in book.author.lower()
            or needle in book.description.lower()
            or needle in book.category.lower()
            or any(needle in tag.lower() for tag in book.tags)
        ]

    def search_by_category(self, category: str) -> list[Book]:
        if not category:
            return []
        with self._lock:
            return [book for book in self._books.values() if book.category == category]

    def find_id_by_title(self, title: str) -> str | None:
        needle = (title or "").strip().lower()
        if not needle:
            return None
        with self._lock:
            for book in self._books.values():
                if book.title.lower() == needle:
                    return book.book_id
            for book in self._books.values():
                if needle in book.title.lower():
                    return book.book_id
        return None

    def get_book(self, book_id: str) -> Book:
        with self._lock:
            book = self._books.get(book_id)
        if book is None:
            raise LendingError(f"图书不存在: {book_id}")
        return book

    def borrow(self, book_id: str, student_id: str, student_name: str) -> BorrowRecord:
        with self._lock:
            book = self.get_book(book_id)
            if not book.available:
                raise LendingError(f"图书已被借出: {book.title}")
            book.available = False
            record = BorrowRecord(
                record_id=str(uuid4()),
                book_id=book_id,
                student_id=student_id,
                student_name=student_name,
                borrowed_at=utcnow(),
            )
            self._records.append(record)
            return record

    def return_book(self, book_id: str, student_id: str) -> BorrowRecord:
        with self._lock:
            book = self.get_book(book_id)
            for record in self._records:
                if record.book_id == book_id and record.student_id == student_id and record.returned_at is None:
                    record.returned_at = utcnow()
                    book.available = True
                    return record
        raise LendingError(f"未找到借阅记录: 图书 {book_id}, 学号 {student_id}")

    def borrow_records(self, student_id: str | None = None) -> list[BorrowRecord]:
        with self._lock:
            return [record for record in self._records if student_id is None or record.student_id == student_id]
