"""对外 API 服务模块。

create_engine() 是组合根：按配置装配存储、Router、预算器与缓存，
返回一个由调用方持有的 ConversationEngine 实例（不使用进程级单例）。
其余函数把领域对象转换为 UI 层便于使用的字典。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore, ConversationSummary
from chat_core.domain.models import Message
from chat_core.engine.budget import ContextBudgeter
from chat_core.engine.cache import RequestCache
from chat_core.engine.conversation_engine import ConversationEngine, EngineConfig
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.providers import create_router
from chat_core.providers.registry import DEFAULT_REGISTRY, ModelRegistry


def create_engine(
    cfg=None,
    store: Optional[ConversationStore] = None,
    registry: Optional[ModelRegistry] = None,
) -> ConversationEngine:
    """根据配置创建会话引擎。

    Args:
        cfg: 配置对象（默认使用全局 settings）
        store: 会话存储（默认使用 storage_root 下的 JSON 存储）
        registry: 模型注册表（默认使用内置模型表）

    Returns:
        新的 ConversationEngine，调用方负责在退出时 close()
    """
    cfg = cfg or settings
    registry = registry or DEFAULT_REGISTRY
    # 默认模型必须已注册，配置错误在启动时暴露而不是首次发送时
    default_model = registry.describe(cfg.default_model)
    store = store if store is not None else JsonConversationStore(root=cfg.storage_root)
    router = create_router(cfg, registry)
    budgeter = ContextBudgeter(
        registry,
        tokens_per_word=cfg.tokens_per_word,
        message_overhead=cfg.message_overhead_tokens,
        fallback_tokens=cfg.fallback_context_tokens,
    )
    config = EngineConfig(
        temperature=cfg.default_temperature,
        max_tokens=cfg.default_max_tokens,
        fail_on_empty_context=cfg.fail_on_empty_context,
        title_max_words=cfg.title_max_words,
        worker_threads=cfg.worker_threads,
    )
    engine = ConversationEngine(
        store=store,
        router=router,
        budgeter=budgeter,
        cache=RequestCache(max_entries=cfg.cache_max_entries),
        config=config,
    )
    logger.info(
        "Engine created",
        extra={"extra": {
            "models": len(registry),
            "default_model": default_model.id,
            "providers": sorted(router.providers),
            "cache_max_entries": cfg.cache_max_entries,
        }},
    )
    return engine


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "text": message.text,
        "sender": message.sender,
        "timestamp": message.timestamp.isoformat(),
    }


def conversation_to_dict(conversation: Conversation) -> Dict[str, Any]:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "created_at": conversation.created_at.isoformat(),
        "updated_at": conversation.updated_at.isoformat(),
        "messages": [message_to_dict(m) for m in conversation.messages],
    }


def list_conversations(engine: ConversationEngine) -> List[Dict[str, Any]]:
    """列出所有已保存的会话（最近更新的在前）。

    Returns:
        会话列表，每项包含 id, title, created_at, updated_at, message_count
    """
    summaries: List[ConversationSummary] = engine.list_conversations()
    return [
        {
            "id": s.id,
            "title": s.title,
            "created_at": s.created_at.isoformat(),
            "updated_at": s.updated_at.isoformat(),
            "message_count": s.message_count,
        }
        for s in summaries
    ]


def list_models(registry: Optional[ModelRegistry] = None, cfg=None) -> List[Dict[str, Any]]:
    """列出可选模型，供 UI 的模型选择器使用。

    is_default 标记配置中的 default_model，UI 用它作为初始选中项。
    """
    cfg = cfg or settings
    registry = registry or DEFAULT_REGISTRY
    models = [registry.describe(mid) for mid in registry.ids()]
    return [
        {
            "id": m.id,
            "display_name": m.display_name,
            "provider": m.provider,
            "context_tokens": m.context_tokens,
            "is_default": m.id == cfg.default_model,
        }
        for m in models
    ]
