"""会话/上下文引擎。

- budget: 按模型上下文窗口估算并裁剪历史消息。
- cache: 一次性请求的去重缓存。
- handles: 后台发送的可观察句柄。
- conversation_engine: 串联以上组件的编排器。
"""

from chat_core.engine.budget import DEFAULT_CONTEXT_TOKENS, ContextBudgeter
from chat_core.engine.cache import RequestCache
from chat_core.engine.conversation_engine import ConversationEngine, EngineConfig, TranscriptEvent
from chat_core.engine.handles import SendHandle, StreamHandle

__all__ = [
    "DEFAULT_CONTEXT_TOKENS",
    "ContextBudgeter",
    "ConversationEngine",
    "EngineConfig",
    "RequestCache",
    "SendHandle",
    "StreamHandle",
    "TranscriptEvent",
]
