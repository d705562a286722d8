from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol
from uuid import uuid4

from .exceptions import BusinessError
from .models import Message


NEW_CONVERSATION_TITLE = "New Chat"
TITLE_ELLIPSIS = "..."


def derive_title(text: str, max_words: int = 4) -> str:
    """取首条用户消息的前几个单词作为会话标题，超出部分以省略号标记。"""

    words = text.split()
    if not words:
        return NEW_CONVERSATION_TITLE
    title = " ".join(words[:max_words])
    if len(words) > max_words:
        title += TITLE_ELLIPSIS
    return title


@dataclass
class Conversation:
    id: str
    title: str
    messages: List[Message]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def new(cls) -> "Conversation":
        now = datetime.now(timezone.utc)
        return cls(
            id=f"c-{uuid4().hex}",
            title=NEW_CONVERSATION_TITLE,
            messages=[],
            created_at=now,
            updated_at=now,
        )

    def append(self, message: Message) -> None:
        self.messages.append(message)
        self.updated_at = datetime.now(timezone.utc)

    def replace(self, message: Message) -> None:
        """用同 id 的新值替换已有消息，会话长度保持不变。"""

        for idx in range(len(self.messages) - 1, -1, -1):
            if self.messages[idx].id == message.id:
                self.messages[idx] = message
                self.updated_at = datetime.now(timezone.utc)
                return
        raise BusinessError(code="MESSAGE_NOT_FOUND", message=message.id)

    def snapshot(self) -> "Conversation":
        return Conversation(
            id=self.id,
            title=self.title,
            messages=list(self.messages),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def summary(self) -> "ConversationSummary":
        return ConversationSummary(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            updated_at=self.updated_at,
            message_count=len(self.messages),
        )


@dataclass
class ConversationSummary:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = field(default=0)


class ConversationStore(Protocol):
    """外部会话存储。只保证“尽力而为、同 id 最后一次写入生效”。"""

    def persist(self, conversation: Conversation) -> None:
        ...

    def list(self) -> List[ConversationSummary]:
        ...

    def fetch(self, conversation_id: str) -> Optional[Conversation]:
        ...

    def delete(self, conversation_id: str) -> None:
        ...
