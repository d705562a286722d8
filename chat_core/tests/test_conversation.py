import dataclasses

import pytest

from chat_core.domain.conversation import NEW_CONVERSATION_TITLE, Conversation, derive_title
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import Message


def test_message_is_immutable():
    m = Message.create("hi", "user")
    assert m.id.startswith("m-")
    assert m.timestamp.tzinfo is not None
    with pytest.raises(dataclasses.FrozenInstanceError):
        m.text = "changed"


def test_with_text_keeps_identity():
    m = Message.create("", "assistant")
    updated = m.with_text("Hello")
    assert updated.id == m.id
    assert updated.timestamp == m.timestamp
    assert updated.sender == "assistant"
    assert updated.text == "Hello"
    assert m.text == ""


def test_derive_title_truncates_long_text():
    title = derive_title("Can you help me debug this function please")
    assert title == "Can you help me..."


def test_derive_title_short_text_unchanged():
    assert derive_title("Explain Python decorators") == "Explain Python decorators"
    assert derive_title("one two three four") == "one two three four"


def test_derive_title_blank_keeps_sentinel():
    assert derive_title("   ") == NEW_CONVERSATION_TITLE


def test_conversation_append_and_replace():
    conv = Conversation.new()
    assert conv.id.startswith("c-")
    assert conv.title == NEW_CONVERSATION_TITLE
    user = Message.create("hello", "user")
    placeholder = Message.create("", "assistant")
    conv.append(user)
    conv.append(placeholder)
    conv.replace(placeholder.with_text("world"))
    assert [m.text for m in conv.messages] == ["hello", "world"]
    assert conv.messages[1].id == placeholder.id
    assert len(conv.messages) == 2


def test_conversation_replace_unknown_message():
    conv = Conversation.new()
    with pytest.raises(BusinessError) as exc:
        conv.replace(Message.create("x", "assistant"))
    assert exc.value.code == "MESSAGE_NOT_FOUND"


def test_snapshot_is_independent():
    conv = Conversation.new()
    conv.append(Message.create("a", "user"))
    snap = conv.snapshot()
    conv.append(Message.create("b", "assistant"))
    assert len(snap.messages) == 1
    assert snap.summary().message_count == 1
