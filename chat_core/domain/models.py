"""统一的消息数据模型。

Message 是会话记录、上下文裁剪、请求缓存与各 Provider 之间共享的唯一
消息结构：

- 一旦创建即不可变（frozen dataclass）。
- 流式回答不会原地修改同一个对象，而是用 with_text() 生成一个
  id/timestamp 不变、text 更长的新值，再由引擎替换会话中的旧值。

所有 Provider 适配器（如 OpenAIClient）只依赖这里的模型，
并负责在各自的 API JSON 和 Message 之间做转换。
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import uuid4


# 消息发送方（与 OpenAI / Anthropic 等厂商的 role 字段对应）
Sender = Literal["user", "assistant"]


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


@dataclass(frozen=True)
class Message:
    """一条对话消息，既可用于请求上下文，也可作为 Provider 的响应。

    - id: 不透明的唯一标识，流式替换时保持不变。
    - text: UTF-8 文本内容。
    - sender: "user" 或 "assistant"。
    - timestamp: 创建时刻（UTC）。
    """

    id: str
    text: str
    sender: Sender
    timestamp: datetime

    @classmethod
    def create(cls, text: str, sender: Sender, message_id: Optional[str] = None) -> "Message":
        return cls(
            id=message_id or new_message_id(),
            text=text,
            sender=sender,
            timestamp=datetime.now(timezone.utc),
        )

    def with_text(self, text: str) -> "Message":
        """返回 id、sender、timestamp 相同但内容替换后的新消息。"""

        return replace(self, text=text)
