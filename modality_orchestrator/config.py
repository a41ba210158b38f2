"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Modality Orchestrator"
    api_prefix: str = "/api/v1"
    environment: str = "dev"
    cors_allowed_origins: str = ""
    cors_allowed_methods: str = "GET,POST,DELETE,OPTIONS"
    cors_allowed_headers: str = "Authorization,Content-Type,X-Request-Id"
    cors_allow_credentials: bool = False

    task_timeout_seconds: float = 10 * 60
    task_retention_hours: int = 72
    max_input_size_bytes: int = 100 * 1024 * 1024
    max_prompt_chars: int = 10_000
    default_user_id: str = "anonymous"
    default_priority: int = Field(default=5, ge=0, le=10)

    # DashScope 的 OpenAI 兼容模式；未配置 api key 时走规则识别，通用对话引擎视为不健康。
    llm_base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    llm_api_key: str | None = None
    llm_model: str = "qwen-plus"
    llm_vision_model: str = "qwen-vl-plus"
    llm_request_timeout_seconds: float = 60
    intent_model: str | None = None

    log_level: str = "INFO"
    log_dir: Path = Field(default=Path("./logs"))
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 5
    log_debug_modules: str = ""
    log_debug_task_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 512

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def cors_allowed_methods_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_methods)

    def cors_allowed_headers_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_headers)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_task_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_task_ids)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings。"""
    return Settings()
