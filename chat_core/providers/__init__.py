"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护模型与 Provider 配置 (registry)。
- 按模型路由到 Provider 实例 (router)。
- 提供各厂商的具体实现 (openai_client、anthropic_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.providers.anthropic_client import AnthropicClient
from chat_core.providers.base import ProviderClient
from chat_core.providers.openai_client import OpenAIClient, XAIClient
from chat_core.providers.registry import DEFAULT_REGISTRY, ModelRegistry
from chat_core.providers.router import ProviderRouter


PROVIDER_NAMES = ("openai", "anthropic", "xai")


def create_provider(name: str, cfg=None, registry: Optional[ModelRegistry] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，名称不区分大小写。"""

    cfg = cfg or settings
    provider_name = name.lower()
    if provider_name == "openai":
        return OpenAIClient(cfg, registry)
    if provider_name == "anthropic":
        return AnthropicClient(cfg, registry)
    if provider_name == "xai":
        return XAIClient(cfg, registry)
    raise KeyError(f"Unknown provider: {name!r}")


def create_router(cfg=None, registry: Optional[ModelRegistry] = None) -> ProviderRouter:
    """为每个内置 Provider 创建一个实例，凭证取自配置。"""

    cfg = cfg or settings
    registry = registry or DEFAULT_REGISTRY
    providers = [create_provider(name, cfg, registry) for name in PROVIDER_NAMES]
    return ProviderRouter(providers, registry)
