import threading
from typing import Dict, List, Optional

from chat_core.domain.conversation import Conversation, ConversationStore, ConversationSummary
from chat_core.domain.exceptions import BusinessError


class InMemoryConversationStore(ConversationStore):
    """进程内存储，保存的是快照，调用方后续修改不会影响已保存内容。"""

    def __init__(self) -> None:
        self._items: Dict[str, Conversation] = {}
        self._lock = threading.Lock()

    def persist(self, conversation: Conversation) -> None:
        with self._lock:
            self._items[conversation.id] = conversation.snapshot()

    def list(self) -> List[ConversationSummary]:
        with self._lock:
            items = [c.summary() for c in self._items.values()]
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def fetch(self, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._items.get(conversation_id)
            return conv.snapshot() if conv is not None else None

    def delete(self, conversation_id: str) -> None:
        with self._lock:
            if conversation_id not in self._items:
                raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
            del self._items[conversation_id]
