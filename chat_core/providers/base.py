"""Provider 抽象接口。

上层 ConversationEngine 不直接依赖具体厂商的 HTTP 协议，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAIClient、AnthropicClient）。
- 负责：将有序的 Message 列表转成具体 API 请求，并把响应解析为 Message
  或按顺序产出的文本片段。

这样可以在不改引擎代码的前提下接入更多厂商。
"""

from typing import Iterator, List, Optional, Protocol, Sequence

from chat_core.domain.models import Message


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 标签（与 ModelDescriptor.provider 对应）。
    - supported_models: 该 Provider 能处理的模型 ID 列表。
    - set_credential(secret): 更新 API Key；未设置凭证是合法状态，
      只在真正调用时以 InvalidCredential 报错。
    - complete(...): 一次非流式调用，返回 assistant Message。
    - stream(...): 一次流式调用，按发出顺序逐个产出文本片段。
    """

    name: str
    display_name: str

    @property
    def supported_models(self) -> List[str]:
        ...

    def set_credential(self, secret: Optional[str]) -> None:
        ...

    def complete(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Message:
        ...

    def stream(
        self,
        context: Sequence[Message],
        model_id: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        """执行一次流式调用；返回的迭代器只能消费一次。"""

        ...
