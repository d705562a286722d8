"""上下文窗口预算。

按单词数估算 token 成本，超出模型预算时从最新消息向前贪心保留，
结果总是输入的一个连续后缀（保持时间顺序）。这是近似算法，
不追求与真实分词器一致。
"""

import math
from fractions import Fraction
from typing import List, Optional, Sequence

from chat_core.domain.exceptions import UnknownModel
from chat_core.domain.models import Message
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import DEFAULT_REGISTRY, ModelRegistry


# 模型未注册时使用的上下文预算
DEFAULT_CONTEXT_TOKENS = 8192
# 每个单词折算的 token 数（经验值）
TOKENS_PER_WORD = 1.3
# 每条消息的角色/分隔符等元数据开销
MESSAGE_OVERHEAD_TOKENS = 10


def count_words(text: str) -> int:
    return len(text.split())


class ContextBudgeter:
    def __init__(
        self,
        registry: Optional[ModelRegistry] = None,
        tokens_per_word: float = TOKENS_PER_WORD,
        message_overhead: int = MESSAGE_OVERHEAD_TOKENS,
        fallback_tokens: int = DEFAULT_CONTEXT_TOKENS,
    ):
        if tokens_per_word <= 0:
            raise ValueError("tokens_per_word must be positive")
        self._registry = registry or DEFAULT_REGISTRY
        # 用有理数避免 10 * 1.3 == 13.000000000000002 这类浮点误差
        self._ratio = Fraction(str(tokens_per_word))
        self._overhead = message_overhead
        self._fallback_tokens = fallback_tokens

    def budget_for(self, model_id: str) -> int:
        try:
            return self._registry.describe(model_id).context_tokens
        except UnknownModel:
            logger.warning(
                "Unregistered model, using fallback context budget",
                extra={"extra": {"model_id": model_id, "budget": self._fallback_tokens}},
            )
            return self._fallback_tokens

    def estimate(self, messages: Sequence[Message]) -> int:
        """tokens = ceil(总单词数 * K) + 消息条数 * 单条开销。"""

        words = sum(count_words(m.text) for m in messages)
        return math.ceil(words * self._ratio) + len(messages) * self._overhead

    def prepare(self, transcript: Sequence[Message], model_id: str) -> List[Message]:
        """返回适合该模型预算的上下文。

        总估算不超预算时原样返回；否则从最新消息向前累加，遇到第一条
        放不下的消息即停止（不跳过它去找更小的旧消息）。最新一条单独
        就超预算时返回空列表，调用方需要把空上下文当作合法输入。
        """

        budget = self.budget_for(model_id)
        if self.estimate(transcript) <= budget:
            return list(transcript)

        kept: List[Message] = []
        used = 0
        for message in reversed(transcript):
            cost = self.estimate([message])
            if used + cost > budget:
                break
            kept.append(message)
            used += cost
        kept.reverse()
        logger.info(
            "Pruned context",
            extra={"extra": {
                "model_id": model_id,
                "budget": budget,
                "kept": len(kept),
                "dropped": len(transcript) - len(kept),
                "estimated_tokens": used,
            }},
        )
        return kept
