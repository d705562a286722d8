import tempfile
from pathlib import Path

import pytest

from chat_core.api.service import conversation_to_dict, create_engine, list_conversations, list_models
from chat_core.domain.exceptions import UnknownModel
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore


class DummySettings:
    openai_api_key = None
    openai_base_url = "https://api.openai.com/v1"
    anthropic_api_key = None
    anthropic_base_url = "https://api.anthropic.com/v1"
    anthropic_version = "2023-06-01"
    anthropic_max_tokens = 4096
    xai_api_key = None
    xai_base_url = "https://api.x.ai/v1"
    http_timeout = 1.0
    default_model = "gpt-4o"
    default_temperature = 0.5
    default_max_tokens = None
    fallback_context_tokens = 8192
    tokens_per_word = 1.3
    message_overhead_tokens = 10
    fail_on_empty_context = False
    cache_max_entries = 10
    title_max_words = 4
    worker_threads = 2

    def __init__(self, storage_root):
        self.storage_root = storage_root


def test_create_engine_uses_json_store():
    with tempfile.TemporaryDirectory() as d:
        cfg = DummySettings(str(Path(d) / ".storage"))
        with create_engine(cfg) as engine:
            assert (Path(d) / ".storage" / "conversations").exists()
            assert list_conversations(engine) == []
            assert engine.current.title == "New Chat"


def test_create_engine_with_custom_store(monkeypatch):
    class Resp:
        status_code = 200
        text = ""

        def json(self):
            return {"choices": [{"message": {"content": "pong"}}]}

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, *a, **kw):
            return Resp()

    monkeypatch.setattr("httpx.Client", Client)
    store = InMemoryConversationStore()
    with create_engine(DummySettings(".unused"), store=store) as engine:
        engine.set_credential("openai", "sk-test-000000")
        assert engine.send_one_shot("ping", "gpt-4o").result(5).text == "pong"
        items = list_conversations(engine)
        assert len(items) == 1
        assert items[0]["title"] == "ping"
        assert items[0]["message_count"] == 2
        data = conversation_to_dict(store.fetch(items[0]["id"]))
        assert [m["sender"] for m in data["messages"]] == ["user", "assistant"]
        assert data["messages"][0]["text"] == "ping"


def test_create_engine_rejects_unregistered_default_model():
    cfg = DummySettings(".unused")
    cfg.default_model = "gpt-9"
    with pytest.raises(UnknownModel):
        create_engine(cfg, store=InMemoryConversationStore())


def test_list_models_marks_default():
    cfg = DummySettings(".unused")
    cfg.default_model = "grok-1"
    models = list_models(cfg=cfg)
    ids = [m["id"] for m in models]
    assert "gpt-4o" in ids and "grok-1" in ids
    assert [m["id"] for m in models if m["is_default"]] == ["grok-1"]
    gpt4o = next(m for m in models if m["id"] == "gpt-4o")
    assert gpt4o == {
        "id": "gpt-4o",
        "display_name": "GPT-4o",
        "provider": "openai",
        "context_tokens": 16384,
        "is_default": False,
    }
