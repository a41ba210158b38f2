"""领域值对象定义：模态类型、输入内容、提示词、处理结果与任务标识。"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, ClassVar, Mapping
from uuid import uuid4

from modality_orchestrator.domain.errors import InvalidInput

MAX_INPUT_SIZE_BYTES = 100 * 1024 * 1024
MAX_PROMPT_CHARS = 10_000
DEFAULT_LANGUAGE = "zh-CN"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_extension(extension: str | None) -> str:
    return (extension or "").strip().lower().lstrip(".")


@dataclass(frozen=True, slots=True)
class ModalityType:
    """模态类型值对象，按 code 判等；内置少量预定义类型并支持注册自定义类型。"""
    code: str
    display_name: str = field(compare=False)
    extensions: frozenset[str] = field(default=frozenset(), compare=False)
    input_supported: bool = field(default=True, compare=False)
    output_supported: bool = field(default=True, compare=False)

    TEXT: ClassVar["ModalityType"]
    IMAGE: ClassVar["ModalityType"]
    AUDIO: ClassVar["ModalityType"]
    VIDEO: ClassVar["ModalityType"]
    DOCUMENT: ClassVar["ModalityType"]

    def __post_init__(self) -> None:
        if not self.code or not self.code.strip():
            raise InvalidInput("modality code cannot be empty")
        if not self.display_name or not self.display_name.strip():
            raise InvalidInput("modality display name cannot be empty")
        object.__setattr__(self, "code", self.code.strip().upper())
        object.__setattr__(self, "extensions", frozenset(_normalize_extension(ext) for ext in self.extensions))

    @classmethod
    def custom(
        cls,
        code: str,
        display_name: str,
        extensions: set[str] | frozenset[str] | tuple[str, ...] = (),
        input_supported: bool = True,
        output_supported: bool = True,
    ) -> "ModalityType":
        """创建并注册自定义模态类型，注册后可通过 from_code 查询。"""
        modality = cls(
            code=code,
            display_name=display_name,
            extensions=frozenset(extensions),
            input_supported=input_supported,
            output_supported=output_supported,
        )
        _CUSTOM_TYPES[modality.code] = modality
        return modality

    @classmethod
    def predefined(cls) -> tuple["ModalityType", ...]:
        return _PREDEFINED

    @classmethod
    def from_code(cls, code: str) -> "ModalityType":
        """按编码（大小写不敏感）查找预定义或已注册的模态类型。"""
        normalized = (code or "").strip().upper()
        for modality in _PREDEFINED:
            if modality.code == normalized:
                return modality
        if normalized in _CUSTOM_TYPES:
            return _CUSTOM_TYPES[normalized]
        raise InvalidInput(f"unknown modality type: {code}")

    @classmethod
    def infer_from_extension(cls, extension: str | None) -> "ModalityType":
        """根据文件扩展名推断模态；无法识别时默认 TEXT。"""
        normalized = _normalize_extension(extension)
        if not normalized:
            return _TEXT
        for modality in _PREDEFINED:
            if normalized in modality.extensions:
                return modality
        return _TEXT

    @classmethod
    def input_supported_types(cls) -> set["ModalityType"]:
        return {item for item in _PREDEFINED if item.input_supported}

    @classmethod
    def output_supported_types(cls) -> set["ModalityType"]:
        return {item for item in _PREDEFINED if item.output_supported}

    def supports_extension(self, extension: str | None) -> bool:
        return _normalize_extension(extension) in self.extensions

    def __str__(self) -> str:
        return self.code


_TEXT = ModalityType("TEXT", "文本", frozenset({"txt", "md"}), True, True)
_IMAGE = ModalityType("IMAGE", "图像", frozenset({"jpg", "jpeg", "png", "gif", "bmp", "webp"}), True, True)
_AUDIO = ModalityType("AUDIO", "音频", frozenset({"mp3", "wav", "m4a", "aac", "flac"}), True, True)
_VIDEO = ModalityType("VIDEO", "视频", frozenset({"mp4", "avi", "mov", "wmv", "flv", "mkv"}), True, False)
_DOCUMENT = ModalityType(
    "DOCUMENT", "文档", frozenset({"pdf", "doc", "docx", "ppt", "pptx", "xls", "xlsx"}), True, False
)
_PREDEFINED: tuple[ModalityType, ...] = (_TEXT, _IMAGE, _AUDIO, _VIDEO, _DOCUMENT)
_CUSTOM_TYPES: dict[str, ModalityType] = {}

ModalityType.TEXT = _TEXT
ModalityType.IMAGE = _IMAGE
ModalityType.AUDIO = _AUDIO
ModalityType.VIDEO = _VIDEO
ModalityType.DOCUMENT = _DOCUMENT

_CONTENT_TYPE_PREFIXES: tuple[tuple[str, ModalityType], ...] = (
    ("image/", _IMAGE),
    ("audio/", _AUDIO),
    ("video/", _VIDEO),
    ("text/", _TEXT),
)


@dataclass(frozen=True, slots=True)
class InputContent:
    """输入内容值对象：非空载荷，大小不超过 100MB，模态由内容类型或扩展名推断。"""
    file_name: str
    content: bytes = field(repr=False)
    content_type: str
    size: int = field(init=False)
    modality_type: ModalityType = field(init=False)

    def __post_init__(self) -> None:
        if not self.file_name or not self.file_name.strip():
            raise InvalidInput("file name cannot be empty")
        if not self.content_type or not self.content_type.strip():
            raise InvalidInput("content type cannot be empty")
        if not self.content:
            raise InvalidInput(f"input content cannot be empty: {self.file_name}")
        content = bytes(self.content)
        if len(content) > MAX_INPUT_SIZE_BYTES:
            raise InvalidInput(f"file size exceeds maximum limit (100MB): {self.file_name}")
        object.__setattr__(self, "content", content)
        object.__setattr__(self, "size", len(content))
        object.__setattr__(self, "modality_type", self._infer_modality())

    @classmethod
    def of(cls, file_name: str, content: bytes, content_type: str) -> "InputContent":
        return cls(file_name=file_name, content=content, content_type=content_type)

    @classmethod
    def text(cls, text: str) -> "InputContent":
        return cls(file_name="input.txt", content=text.encode("utf-8"), content_type="text/plain")

    @property
    def file_extension(self) -> str:
        name = self.file_name
        dot = name.rfind(".")
        return name[dot + 1:].lower() if dot > 0 else ""

    def is_large_file(self) -> bool:
        return self.size > 10 * 1024 * 1024

    def formatted_size(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        if self.size < 1024 * 1024:
            return f"{self.size / 1024:.2f} KB"
        return f"{self.size / (1024 * 1024):.2f} MB"

    def _infer_modality(self) -> ModalityType:
        # 内容类型前缀优先，其次扩展名，最后默认 TEXT。
        content_type = self.content_type.lower()
        for prefix, modality in _CONTENT_TYPE_PREFIXES:
            if content_type.startswith(prefix):
                return modality
        return ModalityType.infer_from_extension(self.file_extension)


_DEFAULT_PROMPTS: dict[str, str] = {
    "IMAGE": "请总结图片内容",
    "AUDIO": "请转录音频内容",
    "VIDEO": "请总结这个视频的主要内容",
    "DOCUMENT": "请总结文档内容",
}


@dataclass(frozen=True, slots=True)
class ProcessingPrompt:
    """处理提示词值对象：内容非空且不超过 10000 字符。"""
    content: str
    language: str = DEFAULT_LANGUAGE

    def __post_init__(self) -> None:
        if self.content is None or not self.content.strip():
            raise InvalidInput("prompt content cannot be empty")
        if len(self.content) > MAX_PROMPT_CHARS:
            raise InvalidInput(f"prompt content too long (max {MAX_PROMPT_CHARS} characters)")
        if not self.language:
            object.__setattr__(self, "language", DEFAULT_LANGUAGE)

    @classmethod
    def of(cls, content: str, language: str | None = None) -> "ProcessingPrompt":
        return cls(content=content, language=language or DEFAULT_LANGUAGE)

    @classmethod
    def default_for(cls, modality: ModalityType) -> "ProcessingPrompt":
        """按输入模态返回默认提示词。"""
        return cls(_DEFAULT_PROMPTS.get(modality.code, "请处理输入内容"), DEFAULT_LANGUAGE)

    def is_empty(self) -> bool:
        return not self.content.strip()

    def with_optimization(self, suffix: str) -> "ProcessingPrompt":
        return ProcessingPrompt(f"{self.content} {suffix}", self.language)

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    """处理结果值对象：文本或二进制至少其一非空，置信度位于 [0, 1]。"""
    content: str | None
    binary_content: bytes | None = field(default=None, repr=False)
    content_type: str = "text/plain"
    confidence: float = 1.0
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    generated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))
        if not self.has_text_content() and not self.has_binary_content():
            raise InvalidInput("processing result must have either text or binary content")
        if not 0.0 <= self.confidence <= 1.0:
            raise InvalidInput("confidence must be between 0.0 and 1.0")
        if not self.content_type or not self.content_type.strip():
            raise InvalidInput("content type cannot be empty")

    @classmethod
    def text(cls, content: str, confidence: float = 1.0, metadata: Mapping[str, Any] | None = None) -> "ProcessingResult":
        return cls(content=content, content_type="text/plain", confidence=confidence, metadata=metadata or {})

    @classmethod
    def binary(
        cls,
        binary_content: bytes,
        content_type: str,
        confidence: float = 1.0,
        metadata: Mapping[str, Any] | None = None,
    ) -> "ProcessingResult":
        return cls(
            content=None,
            binary_content=binary_content,
            content_type=content_type,
            confidence=confidence,
            metadata=metadata or {},
        )

    def has_text_content(self) -> bool:
        return bool(self.content)

    def has_binary_content(self) -> bool:
        return bool(self.binary_content)

    def has_high_confidence(self) -> bool:
        return self.confidence > 0.8

    @property
    def content_size(self) -> int:
        if self.has_text_content():
            return len(self.content or "")
        if self.has_binary_content():
            return len(self.binary_content or b"")
        return 0

    def with_metadata(self, key: str, value: Any) -> "ProcessingResult":
        """返回追加元数据后的新结果，原对象保持不变。"""
        merged = dict(self.metadata)
        merged[key] = value
        return replace(self, metadata=merged)


@dataclass(frozen=True, slots=True)
class ProcessingTaskId:
    """处理任务标识。"""
    value: str

    def __post_init__(self) -> None:
        if self.value is None or not str(self.value).strip():
            raise InvalidInput("processing task id cannot be empty")

    @classmethod
    def generate(cls) -> "ProcessingTaskId":
        return cls(str(uuid4()))

    @classmethod
    def of(cls, value: str) -> "ProcessingTaskId":
        return cls(value)

    def __str__(self) -> str:
        return self.value
