import pytest

from chat_core.domain.exceptions import UnknownModel
from chat_core.providers.registry import DEFAULT_REGISTRY, ModelDescriptor, ModelRegistry


def test_describe_known_model():
    d = DEFAULT_REGISTRY.describe("gpt-4o")
    assert d.display_name == "GPT-4o"
    assert d.provider == "openai"
    assert d.context_tokens == 16384


def test_describe_unknown_model():
    with pytest.raises(UnknownModel) as exc:
        DEFAULT_REGISTRY.describe("gpt-5-ultra")
    assert exc.value.code == "UNKNOWN_MODEL"


def test_models_for_provider():
    ids = {m.id for m in DEFAULT_REGISTRY.models_for("Anthropic")}
    assert ids == {"claude-haiku", "claude-3-sonnet", "claude-3-opus"}
    assert [m.id for m in DEFAULT_REGISTRY.models_for("xai")] == ["grok-1"]


def test_custom_registry_rejects_bad_entries():
    with pytest.raises(ValueError):
        ModelDescriptor("m0", "M0", "openai", 0, "m0")
    m1 = ModelDescriptor("m1", "M1", "openai", 50, "m1")
    with pytest.raises(ValueError):
        ModelRegistry([m1, m1])
    reg = ModelRegistry([m1])
    assert "m1" in reg
    assert "gpt-4o" not in reg
    assert len(reg) == 1
