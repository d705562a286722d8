import pytest
from pydantic import ValidationError

from chat_core.config.settings import Settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    s = Settings()
    assert s.default_model == "gpt-4o"
    assert s.fallback_context_tokens == 8192
    assert s.tokens_per_word == 1.3
    assert s.message_overhead_tokens == 10
    assert s.cache_max_entries == 100
    assert s.title_max_words == 4


def test_yaml_file_and_env_precedence(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    cfg = tmp_path / "chat.yaml"
    cfg.write_text("cache_max_entries: 7\ndefault_model: grok-1\n", encoding="utf-8")
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("DEFAULT_MODEL", "claude-haiku")
    s = Settings()
    assert s.cache_max_entries == 7
    assert s.default_model == "claude-haiku"


def test_rejects_invalid_values(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CHAT_CONFIG_FILE", str(tmp_path / "missing.yaml"))
    with pytest.raises(ValidationError):
        Settings(default_temperature=2.0)
    with pytest.raises(ValidationError):
        Settings(openai_api_key="short")
