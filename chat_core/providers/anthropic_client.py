"""Anthropic Provider 适配器。

本模块负责：

1. 接收有序的 Message 上下文。
2. 将其转换为 Anthropic Messages API 的请求格式（x-api-key 认证，
   max_tokens 为必填字段）。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应中的 text 内容块拼接为 assistant Message；流式模式下
   从 content_block_delta 事件里逐个取出 text_delta。
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import InvalidCredential, NetworkError, RateLimited, UnexpectedResponse
from chat_core.domain.models import Message
from chat_core.providers.http_utils import iter_sse_data, raise_for_status
from chat_core.providers.registry import ANTHROPIC_CONFIG, DEFAULT_REGISTRY, ModelDescriptor, ModelRegistry


class AnthropicClient:
    """Anthropic 提供方客户端实现。"""

    config = ANTHROPIC_CONFIG

    def __init__(self, cfg=settings, registry: Optional[ModelRegistry] = None):
        self._settings = cfg
        self._registry = registry or DEFAULT_REGISTRY
        self._api_key: Optional[str] = getattr(cfg, "anthropic_api_key", None)

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

    def complete(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Message:
        """执行一次非流式调用。

        步骤：
        1. 读取模型配置（模型 ID -> 厂商模型名）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 拼接响应中的 text 内容块。
        """

        api_key = self._require_key()
        descriptor = self._registry.describe(model_id)
        payload = self._build_payload(context, descriptor, temperature, max_tokens, stream=False)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._endpoint(), json=payload, headers=self._headers(api_key))
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        raise_for_status(resp, self.display_name)
        try:
            data = resp.json()
        except ValueError as e:
            raise UnexpectedResponse(code="UNEXPECTED_RESPONSE", message=f"Invalid JSON: {e}", provider=self.name)
        return Message.create(self._parse_response(data), "assistant")

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
                    for event in iter_sse_data(resp):
                        kind = event.get("type")
                        if kind == "content_block_delta":
                            delta = event.get("delta") or {}
                            text = delta.get("text")
                            if delta.get("type") == "text_delta" and isinstance(text, str) and text:
                                yield text
                        elif kind == "message_stop":
                            return
                        elif kind == "error":
                            self._raise_stream_error(event.get("error") or {})
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

    def _raise_stream_error(self, error: Dict[str, Any]) -> None:
        message = error.get("message") or "stream error"
        if error.get("type") == "rate_limit_error":
            raise RateLimited(code="RATE_LIMIT", message=message, http_status=429, provider=self.name)
        raise UnexpectedResponse(code="UNEXPECTED_RESPONSE", message=message, provider=self.name)

    def _require_key(self) -> str:
        if not self._api_key:
            raise InvalidCredential(code="MISSING_API_KEY", message="ANTHROPIC_API_KEY not set", provider=self.name)
        return self._api_key

    def _endpoint(self) -> str:
        base = getattr(self._settings, "anthropic_base_url", None) or self.config.base_url
        return f"{base.rstrip('/')}/messages"

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": getattr(self._settings, "anthropic_version", "2023-06-01"),
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
        return {
            "model": descriptor.provider_model,
            # Anthropic 拒绝空 content，失败流留下的空占位消息不发送
            "messages": [{"role": m.sender, "content": m.text} for m in context if m.text],
            "temperature": temperature,
            "max_tokens": max_tokens or getattr(self._settings, "anthropic_max_tokens", 4096),
            "stream": stream,
        }

    def _parse_response(self, data: Any) -> str:
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise UnexpectedResponse(code="UNEXPECTED_RESPONSE", message="Response has no content", provider=self.name)
        texts = [b.get("text") for b in blocks if isinstance(b, dict) and b.get("type") == "text"]
        texts = [t for t in texts if isinstance(t, str)]
        if not texts:
            raise UnexpectedResponse(
                code="UNEXPECTED_RESPONSE",
                message="Response has no text content block",
                provider=self.name,
            )
        return "".join(texts)
