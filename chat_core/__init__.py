"""Chat Core 顶层包。

该包提供桌面聊天前端背后的会话/上下文引擎，
包括配置加载、领域模型、模型注册表、Provider 适配与路由、
上下文预算、请求缓存、会话编排与持久化存储等能力。
"""

from chat_core.engine import ConversationEngine, EngineConfig

__all__ = ["ConversationEngine", "EngineConfig"]
