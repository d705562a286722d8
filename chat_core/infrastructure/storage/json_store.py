import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore, ConversationSummary
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """每个会话一个 JSON 文件：<root>/conversations/<id>.json，整体覆盖写入。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def persist(self, conversation: Conversation) -> None:
        path = self._path(conversation.id)
        tmp_path = self._conv_root / f"{conversation.id}.{uuid4().hex}.json.tmp"
        obj = {
            "id": conversation.id,
            "title": conversation.title,
            "created_at": _ts(conversation.created_at),
            "updated_at": _ts(conversation.updated_at),
            "messages": [
                {
                    "id": m.id,
                    "text": m.text,
                    "sender": m.sender,
                    "timestamp": _ts(m.timestamp),
                }
                for m in conversation.messages
            ],
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def list(self) -> List[ConversationSummary]:
        items: List[ConversationSummary] = []
        for path in self._conv_root.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                items.append(
                    ConversationSummary(
                        id=data["id"],
                        title=data.get("title") or "",
                        created_at=_parse_ts(data["created_at"]),
                        updated_at=_parse_ts(data["updated_at"]),
                        message_count=len(data.get("messages") or []),
                    )
                )
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Skipped unreadable conversation file", extra={"extra": {"path": str(path), "error": str(e)}})
                continue
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def fetch(self, conversation_id: str) -> Optional[Conversation]:
        path = self._path(conversation_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Conversation(
                id=data["id"],
                title=data.get("title") or "",
                messages=[self._to_message(m) for m in data.get("messages") or []],
                created_at=_parse_ts(data["created_at"]),
                updated_at=_parse_ts(data["updated_at"]),
            )
        except (OSError, ValueError, KeyError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def delete(self, conversation_id: str) -> None:
        path = self._path(conversation_id)
        if not path.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        try:
            path.unlink()
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _path(self, conversation_id: str) -> Path:
        # id 来自外部调用方时不允许跳出存储目录
        if not conversation_id or Path(conversation_id).name != conversation_id:
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        return self._conv_root / f"{conversation_id}.json"

    def _to_message(self, data: Dict[str, Any]) -> Message:
        return Message(
            id=data["id"],
            text=data.get("text") or "",
            sender=data["sender"],
            timestamp=_parse_ts(data["timestamp"]),
        )
