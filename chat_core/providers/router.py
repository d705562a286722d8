"""按模型选择 Provider 实例。

路由表在构造时确定：每个 Provider 标签对应一个实例。除转发凭证更新外，
Router 不修改任何 Provider，也不缓存任何请求结果。
"""

from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence

from chat_core.domain.exceptions import UnsupportedModel, ValidationError
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderClient
from chat_core.providers.registry import DEFAULT_REGISTRY, ModelRegistry


class ProviderRouter:
    def __init__(self, providers: Iterable[ProviderClient], registry: Optional[ModelRegistry] = None):
        self._registry = registry or DEFAULT_REGISTRY
        table: Dict[str, ProviderClient] = {}
        for provider in providers:
            table[provider.name.lower()] = provider
        self._providers: Mapping[str, ProviderClient] = table

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def providers(self) -> Mapping[str, ProviderClient]:
        return dict(self._providers)

    def route(self, model_id: str) -> ProviderClient:
        """返回负责该模型的 Provider。

        Raises:
            UnknownModel: 模型未注册。
            UnsupportedModel: 模型所属 Provider 没有注册实现。
        """

        descriptor = self._registry.describe(model_id)
        provider = self._providers.get(descriptor.provider.lower())
        if provider is None:
            raise UnsupportedModel(
                code="UNSUPPORTED_MODEL",
                message=f"No provider registered for {descriptor.provider!r} (model {model_id!r})",
                model_id=model_id,
                provider=descriptor.provider,
            )
        return provider

    def set_credential(self, provider_tag: str, secret: Optional[str]) -> None:
        provider = self._providers.get(provider_tag.lower())
        if provider is None:
            raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_tag!r}")
        provider.set_credential(secret)
        logger.info("Credential updated", extra={"extra": {"provider": provider.name}})

    def complete(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Message:
        return self.route(model_id).complete(context, model_id, temperature, max_tokens)

    def stream(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        return self.route(model_id).stream(context, model_id, temperature, max_tokens)
