"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 模型与生成参数 ----
    default_model: str = Field(default="gpt-4o", description="默认使用的模型 ID，需在 ModelRegistry 中注册")
    default_temperature: float = Field(default=0.7, ge=0.0, le=1.0, description="生成温度")
    default_max_tokens: Optional[int] = Field(default=None, ge=1, description="单次回答最大 token 数")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI API 基础URL")
    # Anthropic
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    anthropic_base_url: str = Field(default="https://api.anthropic.com/v1", description="Anthropic API 基础URL")
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version 请求头")
    anthropic_max_tokens: int = Field(
        default=4096,
        ge=1,
        description="Anthropic 要求必须携带 max_tokens，未指定时使用该值",
    )
    # x.ai
    xai_api_key: Optional[str] = Field(default=None, description="x.ai API 密钥")
    xai_base_url: str = Field(default="https://api.x.ai/v1", description="x.ai API 基础URL")

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 上下文预算 ----
    fallback_context_tokens: int = Field(
        default=8192,
        ge=1,
        description="模型未注册时使用的上下文窗口 token 预算",
    )
    tokens_per_word: float = Field(default=1.3, gt=0.0, description="每个单词折算的 token 数")
    message_overhead_tokens: int = Field(default=10, ge=0, description="每条消息的元数据开销")
    fail_on_empty_context: bool = Field(
        default=False,
        description="裁剪后上下文为空时是否抛出 ContextTooLarge",
    )

    # ---- 引擎 ----
    cache_max_entries: int = Field(default=100, ge=1, description="请求缓存最大条目数")
    title_max_words: int = Field(default=4, ge=1, description="会话标题取首条消息的单词数")
    worker_threads: int = Field(default=4, ge=1, le=32, description="后台发送线程数")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "anthropic_api_key", "xai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
