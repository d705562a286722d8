import httpx
import pytest

from chat_core.domain.exceptions import (
    ApiError,
    InvalidCredential,
    NetworkError,
    RateLimited,
    UnexpectedResponse,
)
from chat_core.domain.models import Message
from chat_core.providers.openai_client import OpenAIClient, XAIClient


class SettingsStub:
    openai_api_key = "sk-test-000000"
    openai_base_url = "https://api.openai.com/v1"
    xai_api_key = "xai-test-000000"
    xai_base_url = "https://api.x.ai/v1"
    http_timeout = 1.0


class NoKeySettings(SettingsStub):
    openai_api_key = None


CONTEXT = [
    Message.create("hi", "user"),
    Message.create("", "assistant"),
    Message.create("again", "user"),
]


class Resp:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data

    def read(self):
        return self.text.encode()


def _client_class(response=None, lines=None, captured=None, error=None):
    class FakeResponse:
        status_code = 200
        text = ""

        def read(self):
            return b""

        def iter_lines(self):
            for line in lines or []:
                yield line

    class StreamContext:
        def __init__(self, resp):
            self._resp = resp

        def __enter__(self):
            return self._resp

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            if error:
                raise error
            if captured is not None:
                captured.update(url=url, payload=json, headers=headers)
            return response

        def stream(self, method, url, json=None, headers=None, **_):
            if error:
                raise error
            if captured is not None:
                captured.update(url=url, payload=json, headers=headers)
            return StreamContext(response or FakeResponse())

    return Client


def test_complete_parses_first_choice(monkeypatch):
    captured = {}
    data = {"choices": [{"index": 0, "message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}]}
    monkeypatch.setattr("httpx.Client", _client_class(Resp(data=data), captured=captured))
    res = OpenAIClient(SettingsStub()).complete(CONTEXT, "gpt-4o-mini", temperature=0.2, max_tokens=32)
    assert res.text == "ok"
    assert res.sender == "assistant"
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer sk-test-000000"
    payload = captured["payload"]
    assert payload["model"] == "gpt-4o-mini"
    assert payload["temperature"] == 0.2
    assert payload["max_tokens"] == 32
    assert payload["stream"] is False
    # 空占位消息不发送
    assert payload["messages"] == [
        {"role": "user", "content": "hi"},
        {"role": "user", "content": "again"},
    ]


def test_xai_uses_its_own_endpoint_and_key(monkeypatch):
    captured = {}
    data = {"choices": [{"message": {"content": "grok"}}]}
    monkeypatch.setattr("httpx.Client", _client_class(Resp(data=data), captured=captured))
    res = XAIClient(SettingsStub()).complete(CONTEXT, "grok-1")
    assert res.text == "grok"
    assert captured["url"] == "https://api.x.ai/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer xai-test-000000"
    assert "max_tokens" not in captured["payload"]


def test_missing_credential_fails_at_call_time(monkeypatch):
    client = OpenAIClient(NoKeySettings())
    with pytest.raises(InvalidCredential) as exc:
        client.complete(CONTEXT, "gpt-4o")
    assert exc.value.code == "MISSING_API_KEY"
    with pytest.raises(InvalidCredential):
        client.stream(CONTEXT, "gpt-4o")

    data = {"choices": [{"message": {"content": "ok"}}]}
    monkeypatch.setattr("httpx.Client", _client_class(Resp(data=data)))
    client.set_credential("sk-late-000000")
    assert client.complete(CONTEXT, "gpt-4o").text == "ok"


@pytest.mark.parametrize(
    "status,exc_type",
    [(401, InvalidCredential), (403, InvalidCredential), (429, RateLimited), (500, ApiError), (400, ApiError)],
)
def test_status_mapping(monkeypatch, status, exc_type):
    monkeypatch.setattr("httpx.Client", _client_class(Resp(status_code=status, text="boom")))
    with pytest.raises(exc_type) as exc:
        OpenAIClient(SettingsStub()).complete(CONTEXT, "gpt-4o")
    assert exc.value.http_status == status


def test_transport_error_becomes_network_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _client_class(error=httpx.ConnectError("refused")))
    with pytest.raises(NetworkError):
        OpenAIClient(SettingsStub()).complete(CONTEXT, "gpt-4o")


@pytest.mark.parametrize("data", [None, {"choices": []}, {"choices": [{"message": {"content": None}}]}])
def test_malformed_response(monkeypatch, data):
    monkeypatch.setattr("httpx.Client", _client_class(Resp(data=data)))
    with pytest.raises(UnexpectedResponse):
        OpenAIClient(SettingsStub()).complete(CONTEXT, "gpt-4o")


def test_stream_yields_chunks_in_order(monkeypatch):
    captured = {}
    lines = [
        'data: {"choices": [{"index": 0, "delta": {"role": "assistant"}}]}',
        "",
        'data: {"choices": [{"index": 0, "delta": {"content": "He"}}]}',
        'data: {"choices": [{"index": 0, "delta": {"content": "llo "}}]}',
        "data: not-json",
        'data: {"choices": [{"index": 0, "delta": {"content": "world"}, "finish_reason": "stop"}]}',
        "data: [DONE]",
    ]
    monkeypatch.setattr("httpx.Client", _client_class(lines=lines, captured=captured))
    chunks = list(OpenAIClient(SettingsStub()).stream(CONTEXT, "gpt-4o"))
    assert chunks == ["He", "llo ", "world"]
    assert captured["payload"]["stream"] is True


def test_stream_error_payload(monkeypatch):
    lines = [
        'data: {"choices": [{"delta": {"content": "par"}}]}',
        'data: {"error": {"message": "overloaded"}}',
    ]
    monkeypatch.setattr("httpx.Client", _client_class(lines=lines))
    gen = OpenAIClient(SettingsStub()).stream(CONTEXT, "gpt-4o")
    assert next(gen) == "par"
    with pytest.raises(UnexpectedResponse):
        next(gen)


def test_stream_rate_limited(monkeypatch):
    monkeypatch.setattr("httpx.Client", _client_class(Resp(status_code=429, text="slow down")))
    with pytest.raises(RateLimited):
        list(OpenAIClient(SettingsStub()).stream(CONTEXT, "gpt-4o"))
