"""OpenAI 兼容 Chat Completions 客户端：封装一次性补全与 SSE 流式补全。"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx


@dataclass(slots=True)
class LlmCredentials:
    """模型服务认证凭据。"""
    api_key: str | None


class LlmClientError(RuntimeError):
    """模型服务返回了无法使用的响应，或客户端未配置凭据。"""


logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """Chat Completions 异步 HTTP 客户端封装。"""
    def __init__(
        self,
        base_url: str,
        credentials: LlmCredentials,
        default_model: str,
        timeout_seconds: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._default_model = default_model
        self._closed = False
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers=self._headers(),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._credentials.api_key)

    @property
    def default_model(self) -> str:
        return self._default_model

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._credentials.api_key:
            headers["Authorization"] = f"Bearer {self._credentials.api_key}"
        return headers

    def _client_or_raise(self) -> httpx.AsyncClient:
        """返回可用客户端；若已关闭或缺少凭据则抛出异常。"""
        if self._closed:
            raise LlmClientError("ChatCompletionClient is already closed")
        if not self.configured:
            raise LlmClientError("llm api key is not configured")
        return self._client

    async def aclose(self) -> None:
        """关闭底层 HTTP 连接池。"""
        if self._closed:
            return
        await self._client.aclose()
        self._closed = True

    def _body(self, messages: list[dict[str, Any]], model: str | None, stream: bool) -> dict[str, Any]:
        return {"model": model or self._default_model, "messages": messages, "stream": stream}

    @staticmethod
    def _preview(body: dict[str, Any]) -> dict[str, Any]:
        return {
            "model": body["model"],
            "messages": len(body["messages"]),
            "stream": body["stream"],
        }

    def _log_failure(self, op: str, started: float, exc: Exception, body: dict[str, Any]) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        status_code = None
        if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
            status_code = exc.response.status_code
        logger.error(
            "llm request failed",
            extra={
                "event": "llm.request.failed",
                "external_service": "llm",
                "op": op,
                "duration_ms": duration_ms,
                "status_code": status_code,
                "error_type": type(exc).__name__,
                "error": str(exc),
                "payload_preview": self._preview(body),
            },
        )

    async def complete(self, messages: list[dict[str, Any]], model: str | None = None) -> str:
        """发送一次性补全请求，返回首个候选的文本内容。"""
        body = self._body(messages, model, stream=False)
        started = time.perf_counter()
        try:
            response = await self._client_or_raise().post("/chat/completions", json=body)
            response.raise_for_status()
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            self._log_failure("chat.complete", started, exc, body)
            raise LlmClientError(f"malformed completion response: {exc}") from exc
        except Exception as exc:
            self._log_failure("chat.complete", started, exc, body)
            raise
        logger.debug(
            "llm request completed",
            extra={
                "event": "llm.request.completed",
                "external_service": "llm",
                "op": "chat.complete",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return content or ""

    async def stream(self, messages: list[dict[str, Any]], model: str | None = None) -> AsyncIterator[str]:
        """发送流式补全请求，逐个产出增量文本。"""
        body = self._body(messages, model, stream=True)
        started = time.perf_counter()
        try:
            async with self._client_or_raise().stream("POST", "/chat/completions", json=body) as response:
                response.raise_for_status()
                async for event in self._iter_events(response):
                    data = event["data"]
                    if data == "[DONE]":
                        break
                    delta = self._delta(data)
                    if delta:
                        yield delta
        except Exception as exc:
            self._log_failure("chat.stream", started, exc, body)
            raise

    async def _iter_events(self, response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        """读取 SSE 流并组装为事件字典。"""
        event_name: str | None = None
        data_lines: list[str] = []
        async for raw_line in response.aiter_lines():
            line = raw_line.strip()
            if not line:
                if data_lines:
                    yield {"event": event_name or "message", "data": self._parse_json("\n".join(data_lines))}
                event_name = None
                data_lines = []
                continue
            if line.startswith(":"):
                continue
            if line.startswith("event:"):
                event_name = line.split(":", 1)[1].strip()
            elif line.startswith("data:"):
                data_lines.append(line.split(":", 1)[1].strip())
        if data_lines:
            yield {"event": event_name or "message", "data": self._parse_json("\n".join(data_lines))}

    @staticmethod
    def _delta(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        choices = data.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        return delta.get("content") or ""

    @staticmethod
    def _parse_json(value: str) -> Any:
        """尽量将字符串解析为 JSON，失败时返回原始字符串。"""
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
