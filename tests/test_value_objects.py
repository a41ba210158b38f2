"""值对象测试：模态类型、输入内容、提示词与处理结果的校验规则。"""

from __future__ import annotations

import pytest

from modality_orchestrator.domain.errors import InvalidInput
from modality_orchestrator.domain.models import (
    MAX_PROMPT_CHARS,
    InputContent,
    ModalityType,
    ProcessingPrompt,
    ProcessingResult,
    ProcessingTaskId,
)


def test_modality_lookup_is_case_insensitive() -> None:
    assert ModalityType.from_code("image") is ModalityType.IMAGE
    assert ModalityType.from_code(" Text ") == ModalityType.TEXT
    with pytest.raises(InvalidInput):
        ModalityType.from_code("hologram")


def test_modality_support_flags() -> None:
    assert ModalityType.VIDEO in ModalityType.input_supported_types()
    assert ModalityType.VIDEO not in ModalityType.output_supported_types()
    assert ModalityType.DOCUMENT not in ModalityType.output_supported_types()
    assert len(ModalityType.predefined()) == 5


def test_extension_inference_defaults_to_text() -> None:
    assert ModalityType.infer_from_extension(".PNG") is ModalityType.IMAGE
    assert ModalityType.infer_from_extension("flac") is ModalityType.AUDIO
    assert ModalityType.infer_from_extension("xyz") is ModalityType.TEXT
    assert ModalityType.infer_from_extension(None) is ModalityType.TEXT
    assert ModalityType.DOCUMENT.supports_extension("pdf")


def test_custom_modality_is_registered() -> None:
    model3d = ModalityType.custom("model3d", "三维模型", {"obj", ".STL"}, output_supported=False)
    assert model3d.code == "MODEL3D"
    assert ModalityType.from_code("Model3D") == model3d
    assert model3d.supports_extension("stl")
    assert model3d == ModalityType("MODEL3D", "another name")


@pytest.mark.parametrize(
    ("file_name", "content_type", "expected"),
    [
        ("photo.bin", "image/png", ModalityType.IMAGE),
        ("notes.md", "application/octet-stream", ModalityType.TEXT),
        ("clip.MP4", "application/octet-stream", ModalityType.VIDEO),
        ("report.pdf", "application/pdf", ModalityType.DOCUMENT),
        ("voice", "audio/mpeg", ModalityType.AUDIO),
        ("unknown", "application/octet-stream", ModalityType.TEXT),
    ],
)
def test_input_content_modality_inference(file_name: str, content_type: str, expected: ModalityType) -> None:
    assert InputContent.of(file_name, b"data", content_type).modality_type == expected


def test_input_content_validation() -> None:
    with pytest.raises(InvalidInput):
        InputContent.of("empty.txt", b"", "text/plain")
    with pytest.raises(InvalidInput):
        InputContent.of(" ", b"x", "text/plain")
    with pytest.raises(InvalidInput):
        InputContent.of("a.txt", b"x", "")

    item = InputContent.of("big.bin", b"x" * 2048, "application/octet-stream")
    assert item.size == 2048
    assert item.formatted_size() == "2.00 KB"
    assert item.file_extension == "bin"
    assert not item.is_large_file()


def test_prompt_rules() -> None:
    with pytest.raises(InvalidInput):
        ProcessingPrompt.of("   ")
    with pytest.raises(InvalidInput):
        ProcessingPrompt.of("x" * (MAX_PROMPT_CHARS + 1))
    prompt = ProcessingPrompt.of("x" * MAX_PROMPT_CHARS, None)
    assert len(prompt) == MAX_PROMPT_CHARS
    assert prompt.language == "zh-CN"
    assert ProcessingPrompt.default_for(ModalityType.AUDIO).content == "请转录音频内容"
    assert ProcessingPrompt.default_for(ModalityType.VIDEO).content == "请总结这个视频的主要内容"
    assert ProcessingPrompt.default_for(ModalityType.DOCUMENT).content == "请总结文档内容"
    assert ProcessingPrompt.default_for(ModalityType.TEXT).content == "请处理输入内容"
    assert ProcessingPrompt.of("总结").with_optimization("简洁").content == "总结 简洁"


def test_result_requires_content_and_valid_confidence() -> None:
    with pytest.raises(InvalidInput):
        ProcessingResult(content=None)
    with pytest.raises(InvalidInput):
        ProcessingResult.text("ok", confidence=1.5)

    result = ProcessingResult.text("ok", confidence=0.9, metadata={"a": 1})
    assert result.has_high_confidence()
    assert result.content_size == 2
    enriched = result.with_metadata("b", 2)
    assert dict(enriched.metadata) == {"a": 1, "b": 2}
    assert dict(result.metadata) == {"a": 1}
    with pytest.raises(TypeError):
        result.metadata["c"] = 3

    image = ProcessingResult.binary(b"\x89PNG", "image/png")
    assert image.has_binary_content() and not image.has_text_content()
    assert image.content_size == 4


def test_task_id_rules() -> None:
    with pytest.raises(InvalidInput):
        ProcessingTaskId.of(" ")
    assert ProcessingTaskId.generate() != ProcessingTaskId.generate()
    assert str(ProcessingTaskId.of("abc")) == "abc"
