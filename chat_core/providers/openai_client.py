"""OpenAI 兼容协议的 Provider 适配器（OpenAI、x.ai）。

两家都使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
- 流式: SSE，每行 `data: {...}`，增量在 choices[].delta.content，以 `data: [DONE]` 结束。

本实现只依赖公共字段：model/messages/temperature/max_tokens/stream。
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import InvalidCredential, NetworkError, UnexpectedResponse
from chat_core.domain.models import Message
from chat_core.providers.http_utils import iter_sse_data, raise_for_status
from chat_core.providers.registry import (
    DEFAULT_REGISTRY,
    OPENAI_CONFIG,
    XAI_CONFIG,
    ModelDescriptor,
    ModelRegistry,
    ProviderConfig,
)


class OpenAICompatibleClient:
    """OpenAI 兼容 Provider 的通用实现，子类只需声明配置与设置项名称。"""

    config: ProviderConfig = OPENAI_CONFIG
    api_key_setting = "openai_api_key"
    base_url_setting = "openai_base_url"

    def __init__(self, cfg=settings, registry: Optional[ModelRegistry] = None):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = cfg
        self._registry = registry or DEFAULT_REGISTRY
        self._api_key: Optional[str] = getattr(cfg, self.api_key_setting, None)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def display_name(self) -> str:
        return self.config.display_name

    @property
    def supported_models(self) -> List[str]:
        return [m.id for m in self._registry.models_for(self.name)]

    def set_credential(self, secret: Optional[str]) -> None:
        self._api_key = secret or None

    # ---- 非流式 ----

    def complete(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Message:
        api_key = self._require_key()
        descriptor = self._registry.describe(model_id)
        payload = self._build_payload(context, descriptor, temperature, max_tokens, stream=False)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._endpoint(), json=payload, headers=self._headers(api_key))
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        raise_for_status(resp, self.display_name)
        try:
            data = resp.json()
        except ValueError as e:
            raise UnexpectedResponse(code="UNEXPECTED_RESPONSE", message=f"Invalid JSON: {e}", provider=self.name)
        return Message.create(self._parse_response(data), "assistant")

    # ---- 流式 ----

    def stream(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        api_key = self._require_key()
        descriptor = self._registry.describe(model_id)
        payload = self._build_payload(context, descriptor, temperature, max_tokens, stream=True)
        return self._stream(payload, api_key)

    def _stream(self, payload: dict, api_key: str) -> Iterator[str]:
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream("POST", self._endpoint(), json=payload, headers=self._headers(api_key)) as resp:
                    raise_for_status(resp, self.display_name, streaming=True)
                    for data in iter_sse_data(resp):
                        if data.get("error"):
                            raise UnexpectedResponse(
                                code="UNEXPECTED_RESPONSE",
                                message=str(data["error"]),
                                provider=self.name,
                            )
                        for ch in data.get("choices") or []:
                            delta = ch.get("delta") or {}
                            text = delta.get("content")
                            if isinstance(text, str) and text:
                                yield text
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

    # ---- 辅助方法 ----

    def _require_key(self) -> str:
        if not self._api_key:
            # 凭证缺失只在调用时报错
            raise InvalidCredential(
                code="MISSING_API_KEY",
                message=f"{self.api_key_setting.upper()} not set",
                provider=self.name,
            )
        return self._api_key

    def _endpoint(self) -> str:
        base = getattr(self._settings, self.base_url_setting, None) or self.config.base_url
        return f"{base.rstrip('/')}/chat/completions"

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(
        self,
        context: Sequence[Message],
        descriptor: ModelDescriptor,
        temperature: float,
        max_tokens: Optional[int],
        stream: bool,
    ) -> dict:
        payload: Dict[str, Any] = {
            "model": descriptor.provider_model,
            "messages": [self._message_to_payload(m) for m in context if m.text],
            "temperature": temperature,
            "stream": stream,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return payload

    def _parse_response(self, data: Any) -> str:
        """取第一个候选回答的文本内容。"""

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise UnexpectedResponse(code="UNEXPECTED_RESPONSE", message="Response has no choices", provider=self.name)
        msg = choices[0].get("message") or {}
        content = msg.get("content")
        if not isinstance(content, str):
            raise UnexpectedResponse(
                code="UNEXPECTED_RESPONSE",
                message="Response message has no text content",
                provider=self.name,
            )
        return content

    @staticmethod
    def _message_to_payload(message: Message) -> Dict[str, Any]:
        return {"role": message.sender, "content": message.text}


class OpenAIClient(OpenAICompatibleClient):
    config = OPENAI_CONFIG
    api_key_setting = "openai_api_key"
    base_url_setting = "openai_base_url"


class XAIClient(OpenAICompatibleClient):
    config = XAI_CONFIG
    api_key_setting = "xai_api_key"
    base_url_setting = "xai_base_url"
