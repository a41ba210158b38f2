"""模型响应的容错解析：用正则扫描意图与参数，容忍不完整或格式偏差的 JSON。"""

from __future__ import annotations

import re

from modality_orchestrator.domain.enums import UserIntent
from modality_orchestrator.domain.intent.extractors import KNOWN_PARAMETER_KEYS

_INTENT_FIELD_PATTERN = re.compile(r"[\"']intent[\"']\s*:\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
_BARE_TAG_PATTERN = re.compile(r"\b([A-Za-z]+(?:_[A-Za-z]+)+)\b")
_KEY_VALUE_PATTERN = re.compile(r"\"([^\"]+)\"\s*:\s*\"([^\"]*)\"")


def parse_intent_response(response: str | None) -> tuple[UserIntent, dict[str, str]]:
    """从模型输出中解析意图与参数。

    - 优先读取 `"intent": "..."` 字段；缺失时在全文中查找第一个可识别的意图标签。
    - 参数按 `"key": "value"` 逐对扫描，仅保留已知参数键，空值忽略。
    - 无法识别的意图一律归为 GENERAL_PROCESSING。
    """
    text = (response or "").strip()
    if not text:
        return UserIntent.GENERAL_PROCESSING, {}

    intent: UserIntent | None = None
    match = _INTENT_FIELD_PATTERN.search(text)
    if match:
        intent = UserIntent.parse(match.group(1))
    if intent is None:
        for candidate in _BARE_TAG_PATTERN.findall(text):
            intent = UserIntent.parse(candidate)
            if intent is not None:
                break

    params: dict[str, str] = {}
    for key, value in _KEY_VALUE_PATTERN.findall(text):
        if key in KNOWN_PARAMETER_KEYS and value.strip():
            params[key] = value.strip()
    return intent or UserIntent.GENERAL_PROCESSING, params
