"""参数提取器链：按正则从自然语言输入中提取结构化参数。"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable

logger = logging.getLogger(__name__)

BOOK_ID = "bookId"
BOOK_TITLE = "bookTitle"
STUDENT_ID = "studentId"
STUDENT_NAME = "studentName"
CATEGORY = "category"

KNOWN_PARAMETER_KEYS: frozenset[str] = frozenset({BOOK_ID, BOOK_TITLE, STUDENT_ID, STUDENT_NAME, CATEGORY})


class ParameterExtractor(ABC):
    """参数提取器抽象：先判断是否支持，再提取参数。"""
    name: str = "extractor"

    @abstractmethod
    def supports(self, text: str) -> bool:
        """判断提取器是否适用于该输入。"""

    @abstractmethod
    def extract(self, text: str) -> dict[str, str]:
        """提取参数；未命中任何字段时返回空字典。"""


_BOOK_ID_PATTERN = re.compile(
    r"(?:(?:图书|书籍|书)\s*ID|book\s*id)\s*(?:is\b|[为是:：=#])?\s*(\d+)",
    re.IGNORECASE,
)
# 裸 "id" 视为学号；"book id"、"图书ID" 归属 bookId。
_STUDENT_ID_PATTERN = re.compile(
    r"(?:学号|student\s*(?:id|number|no\.?)|(?<!book )(?<!book)(?<!书)(?<!书 )(?<![A-Za-z])id)"
    r"\s*(?:is\b|[为是:：=#])?\s*(\d+)",
    re.IGNORECASE,
)
_STUDENT_NAME_CN_PATTERN = re.compile(r"(?:姓名|名字)\s*(?:[为是:：=]\s*)?([^，,。.；;、\s]+)")
_STUDENT_NAME_EN_PATTERN = re.compile(
    r"(?<!book )\bname\b\s*(?:is\b|[:：=])?\s*"
    r"([A-Za-z一-鿿][^,，。;；\n《\"“]*?)"
    r"\s*(?=$|[,，。;；\n《\"“]|\.(?:\s|$)|\s+(?:and|id|student|book)\b)",
    re.IGNORECASE,
)
_BOOK_TITLE_PATTERN = re.compile(r"[《\"“](.+?)[》\"”]")
_CATEGORY_PATTERN = re.compile(
    r"(编程|程序|数学|文学|历史|小说|科幻|传记|心理学|经济|管理|艺术|音乐|体育|地理|天文|化学|物理|生物)(?:类|书籍|书)?"
)
_CATEGORY_MAPPING: dict[str, str] = {
    "编程": "编程",
    "程序": "编程",
    "小说": "文学",
    "科幻": "文学",
    "传记": "文学",
    "心理学": "心理",
    "音乐": "艺术",
}
_LENDING_HINTS = (
    "书", "借", "还", "学号", "姓名",
    "book", "borrow", "lend", "return", "student", "library",
)


class LendingParameterExtractor(ParameterExtractor):
    """借阅场景参数提取器：图书 ID、书名、学号、姓名与类别。"""
    name = "lending"

    def supports(self, text: str) -> bool:
        if not text:
            return False
        lowered = text.lower()
        return any(hint in lowered for hint in _LENDING_HINTS) or bool(_BOOK_TITLE_PATTERN.search(text))

    def extract(self, text: str) -> dict[str, str]:
        params: dict[str, str] = {}
        if not text:
            return params

        match = _BOOK_ID_PATTERN.search(text)
        if match:
            params[BOOK_ID] = match.group(1)

        match = _STUDENT_ID_PATTERN.search(text)
        if match:
            params[STUDENT_ID] = match.group(1)

        name = self._extract_name(text)
        if name:
            params[STUDENT_NAME] = name

        match = _BOOK_TITLE_PATTERN.search(text)
        if match and match.group(1).strip():
            params[BOOK_TITLE] = match.group(1).strip()

        # 书名内的词不参与类别判断
        match = _CATEGORY_PATTERN.search(_BOOK_TITLE_PATTERN.sub(" ", text))
        if match:
            word = match.group(1)
            params[CATEGORY] = _CATEGORY_MAPPING.get(word, word)
        return params

    @staticmethod
    def _extract_name(text: str) -> str | None:
        match = _STUDENT_NAME_CN_PATTERN.search(text)
        if match:
            return match.group(1).strip()
        match = _STUDENT_NAME_EN_PATTERN.search(text)
        if match:
            return match.group(1).strip().rstrip(".") or None
        return None


class GeneralParameterExtractor(ParameterExtractor):
    """通用兜底提取器：始终适用，不产出任何字段。"""
    name = "general"

    def supports(self, text: str) -> bool:
        return True

    def extract(self, text: str) -> dict[str, str]:
        return {}


class ParameterExtractorManager:
    """依次运行所有适用的提取器并合并结果，同名键以后执行者为准。"""
    def __init__(self, extractors: Iterable[ParameterExtractor] | None = None) -> None:
        self._extractors: list[ParameterExtractor] = list(
            extractors if extractors is not None else (LendingParameterExtractor(), GeneralParameterExtractor())
        )

    @property
    def extractors(self) -> tuple[ParameterExtractor, ...]:
        return tuple(self._extractors)

    def extract(self, text: str) -> dict[str, str]:
        merged: dict[str, str] = {}
        for extractor in self._extractors:
            if not extractor.supports(text):
                continue
            extracted = extractor.extract(text)
            if extracted:
                logger.debug(
                    "parameters extracted",
                    extra={"event": "intent.parameters.extracted", "op": extractor.name},
                )
            merged.update(extracted)
        return merged
