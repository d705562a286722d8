from chat_core.domain.models import Message
from chat_core.engine.budget import DEFAULT_CONTEXT_TOKENS, ContextBudgeter, count_words
from chat_core.providers.registry import ModelDescriptor, ModelRegistry


REGISTRY = ModelRegistry([
    ModelDescriptor("m1", "Model One", "fake", 50, "m1"),
    ModelDescriptor("big", "Big", "fake", 100000, "big"),
])


def _msgs(*texts):
    out = []
    for i, t in enumerate(texts):
        out.append(Message.create(t, "user" if i % 2 == 0 else "assistant"))
    return out


def test_count_words_splits_on_any_whitespace():
    assert count_words("a b\nc\t d") == 4
    assert count_words("") == 0


def test_estimate_formula():
    b = ContextBudgeter(REGISTRY)
    # "hi": ceil(1 * 1.3) + 10
    assert b.estimate(_msgs("hi")) == 12
    # 10 words -> exactly 13, no float rounding up to 14
    assert b.estimate(_msgs("w " * 10)) == 23
    assert b.estimate([]) == 0


def test_estimate_is_monotonic():
    b = ContextBudgeter(REGISTRY)
    msgs = []
    previous = b.estimate(msgs)
    for text in ["a", "two words", "x", "a much longer message with many words in it", "y"]:
        msgs.append(Message.create(text, "user"))
        current = b.estimate(msgs)
        assert current >= previous
        previous = current


def test_prepare_under_budget_returns_everything():
    b = ContextBudgeter(REGISTRY)
    msgs = _msgs("hello there", "hi", "how are you")
    out = b.prepare(msgs, "big")
    assert out == msgs
    assert out is not msgs


def test_prepare_scenario_keeps_recent_suffix():
    b = ContextBudgeter(REGISTRY)
    msgs = _msgs(*["hi"] * 10)
    out = b.prepare(msgs, "m1")
    # 12 tokens each, budget 50 -> 4 messages (48)
    assert out == msgs[-4:]
    assert b.estimate(out) <= 50


def test_prepare_stops_at_first_oversized_message():
    b = ContextBudgeter(REGISTRY)
    long_text = " ".join(["word"] * 20)  # 26 + 10 = 36 tokens
    msgs = _msgs("hi", long_text, "hi", "hi")
    out = b.prepare(msgs, "m1")
    # 12 + 12 fits, the 36-token message would exceed 50, the older "hi" is not reached
    assert out == msgs[-2:]


def test_prepare_returns_contiguous_suffix_within_budget():
    b = ContextBudgeter(REGISTRY)
    texts = ["a b c", "d", "e f g h i j", "k l", "m", "n o p q"]
    msgs = _msgs(*texts)
    out = b.prepare(msgs, "m1")
    assert out == msgs[len(msgs) - len(out):]
    assert b.estimate(out) <= 50


def test_prepare_empty_when_last_message_too_large():
    b = ContextBudgeter(REGISTRY)
    msgs = _msgs("hi", " ".join(["word"] * 40))
    assert b.prepare(msgs, "m1") == []


def test_unregistered_model_uses_fallback_budget():
    b = ContextBudgeter(REGISTRY)
    assert b.budget_for("missing") == DEFAULT_CONTEXT_TOKENS
    b2 = ContextBudgeter(REGISTRY, fallback_tokens=30)
    msgs = _msgs("hi", "hi", "hi")
    assert b2.prepare(msgs, "missing") == msgs[-2:]
