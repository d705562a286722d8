"""RequestCache：一次性请求的内存去重缓存。"""

import hashlib
import json
import threading
from collections import OrderedDict
from typing import Optional, Sequence

from chat_core.domain.models import Message


DEFAULT_MAX_ENTRIES = 100


class RequestCache:
    """按“完整上下文 + 模型”寻址的有界缓存。

    满额时淘汰最早插入的条目，而不是最久未访问的条目；命中不会刷新顺序。
    流式请求不经过这里。
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._entries: "OrderedDict[str, Message]" = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max_entries

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def lookup(self, context: Sequence[Message], model_id: str) -> Optional[Message]:
        key = self.key_for(context, model_id)
        with self._lock:
            return self._entries.get(key)

    def store(self, response: Message, context: Sequence[Message], model_id: str) -> None:
        key = self.key_for(context, model_id)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = response

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def key_for(context: Sequence[Message], model_id: str) -> str:
        # JSON 编码保证字段边界清晰，"ab"+"c" 与 "a"+"bc" 不会得到相同输入
        parts = [model_id, [[m.sender, m.text] for m in context]]
        raw = json.dumps(parts, ensure_ascii=False, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
