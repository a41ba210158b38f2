"""参数提取器测试：覆盖中英文输入、字段顺序无关性与管理器合并规则。"""

from __future__ import annotations

import pytest

from modality_orchestrator.domain.intent.extractors import (
    GeneralParameterExtractor,
    LendingParameterExtractor,
    ParameterExtractor,
    ParameterExtractorManager,
)

EXPECTED_BORROW = {"bookTitle": "Intro to Algorithms", "studentId": "2021001", "studentName": "Li Lei"}


@pytest.mark.parametrize(
    "text",
    [
        "I want to borrow 《Intro to Algorithms》, my id is 2021001 and name is Li Lei",
        "My name is Li Lei, student id 2021001, I want to borrow 《Intro to Algorithms》",
        "student id: 2021001, borrow 《Intro to Algorithms》, name: Li Lei",
    ],
)
def test_english_borrow_request_in_any_order(text: str) -> None:
    """字段出现顺序不影响提取结果。"""
    assert LendingParameterExtractor().extract(text) == EXPECTED_BORROW


def test_chinese_borrow_request() -> None:
    params = LendingParameterExtractor().extract("我想借《Java核心技术》，学号：2021001，姓名为张三")
    assert params == {"bookTitle": "Java核心技术", "studentId": "2021001", "studentName": "张三"}


def test_book_id_is_not_mistaken_for_student_id() -> None:
    """"图书ID"与"book id"归属 bookId，学号单独提取。"""
    extractor = LendingParameterExtractor()
    assert extractor.extract("归还图书ID 12，学号2021001") == {"bookId": "12", "studentId": "2021001"}
    assert extractor.extract("return book id 7 for student id 2021002") == {"bookId": "7", "studentId": "2021002"}


def test_category_is_normalized_and_ignores_titles() -> None:
    extractor = LendingParameterExtractor()
    assert extractor.extract("推荐几本小说类的书") == {"category": "文学"}
    assert extractor.extract("有没有编程书籍") == {"category": "编程"}
    # 书名中的"数学"不视为类别
    assert extractor.extract("搜索《数学之美》") == {"bookTitle": "数学之美"}


def test_lending_extractor_support_hints() -> None:
    extractor = LendingParameterExtractor()
    assert extractor.supports("我想借书")
    assert extractor.supports("Can I borrow something")
    assert extractor.supports("《三体》")
    assert not extractor.supports("今天天气怎么样")
    assert not extractor.supports("")


def test_general_extractor_always_applies_and_extracts_nothing() -> None:
    extractor = GeneralParameterExtractor()
    assert extractor.supports("anything")
    assert extractor.extract("学号2021001") == {}


class _FixedExtractor(ParameterExtractor):
    def __init__(self, name: str, values: dict[str, str], applies: bool = True) -> None:
        self.name = name
        self._values = values
        self._applies = applies

    def supports(self, text: str) -> bool:
        return self._applies

    def extract(self, text: str) -> dict[str, str]:
        return dict(self._values)


def test_manager_merges_results_with_last_writer_winning() -> None:
    """多个提取器结果取并集，同名键以后执行者为准，不适用者被跳过。"""
    manager = ParameterExtractorManager(
        [
            _FixedExtractor("first", {"bookId": "1", "studentId": "100"}),
            _FixedExtractor("skipped", {"bookId": "999"}, applies=False),
            _FixedExtractor("second", {"bookId": "2"}),
        ]
    )
    assert manager.extract("whatever") == {"bookId": "2", "studentId": "100"}
    assert [item.name for item in manager.extractors] == ["first", "skipped", "second"]


def test_default_manager_handles_plain_text() -> None:
    assert ParameterExtractorManager().extract("今天天气怎么样") == {}
