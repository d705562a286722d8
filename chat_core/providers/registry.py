"""Provider 与模型配置。

本模块将“模型 ID”与“厂商模型名”解耦：

- id：UI 与引擎里使用的统一名称，例如 "claude-haiku"。
- provider_model：厂商实际提供的模型 ID，例如 "claude-3-haiku-20240307"。

每个模型还声明所属 Provider 与上下文窗口 token 预算，
上下文裁剪与路由都只从这里读取，进程启动后不再修改。"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from chat_core.domain.exceptions import UnknownModel


@dataclass(frozen=True)
class ModelDescriptor:
    """单个模型的静态描述。"""

    id: str
    display_name: str
    provider: str
    context_tokens: int
    provider_model: str

    def __post_init__(self) -> None:
        if self.context_tokens <= 0:
            raise ValueError(f"context_tokens must be positive for {self.id!r}")


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    display_name: str
    base_url: str


OPENAI_CONFIG = ProviderConfig(name="openai", display_name="OpenAI", base_url="https://api.openai.com/v1")
ANTHROPIC_CONFIG = ProviderConfig(name="anthropic", display_name="Anthropic", base_url="https://api.anthropic.com/v1")
XAI_CONFIG = ProviderConfig(name="xai", display_name="X.AI", base_url="https://api.x.ai/v1")


DEFAULT_MODELS: List[ModelDescriptor] = [
    # OpenAI
    ModelDescriptor("gpt-4o", "GPT-4o", "openai", 16384, "gpt-4o"),
    ModelDescriptor("gpt-4o-mini", "GPT-4o Mini", "openai", 8192, "gpt-4o-mini"),
    ModelDescriptor("gpt-4", "GPT-4", "openai", 8192, "gpt-4"),
    ModelDescriptor("gpt-4-turbo", "GPT-4 Turbo", "openai", 8192, "gpt-4-turbo"),
    ModelDescriptor("gpt-3.5-turbo", "GPT-3.5 Turbo", "openai", 8192, "gpt-3.5-turbo"),
    # Anthropic
    ModelDescriptor("claude-haiku", "Claude Haiku", "anthropic", 8192, "claude-3-haiku-20240307"),
    ModelDescriptor("claude-3-sonnet", "Claude 3 Sonnet", "anthropic", 8192, "claude-3-sonnet-20240229"),
    ModelDescriptor("claude-3-opus", "Claude 3 Opus", "anthropic", 8192, "claude-3-opus-20240229"),
    # x.ai
    ModelDescriptor("grok-1", "Grok-1", "xai", 8192, "grok-1"),
]


class ModelRegistry:
    """模型 ID -> ModelDescriptor 的只读映射，构造后不再变化。"""

    def __init__(self, models: Optional[Iterable[ModelDescriptor]] = None):
        table: Dict[str, ModelDescriptor] = {}
        for m in DEFAULT_MODELS if models is None else models:
            if m.id in table:
                raise ValueError(f"Duplicate model id: {m.id!r}")
            table[m.id] = m
        self._models: Mapping[str, ModelDescriptor] = table

    def describe(self, model_id: str) -> ModelDescriptor:
        try:
            return self._models[model_id]
        except KeyError:
            raise UnknownModel(code="UNKNOWN_MODEL", message=f"Unknown model: {model_id!r}", model_id=model_id)

    def models_for(self, provider: str) -> List[ModelDescriptor]:
        key = provider.lower()
        return [m for m in self._models.values() if m.provider.lower() == key]

    def ids(self) -> List[str]:
        return list(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __len__(self) -> int:
        return len(self._models)


DEFAULT_REGISTRY = ModelRegistry()
