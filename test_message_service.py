from datetime import datetime, timedelta, timezone

import pytest

from conftest import run
from core.errors import InvalidInput, NotFound
from core.platform import PlatformError
from models.message import MessageForm
from services.message_service import half_limit, merge_messages

BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def seed(platform, sender, receiver, content, minutes, read=False):
    """Store a message directly so its timestamp is fixed."""
    data = {
        "senderId": sender,
        "receiverId": receiver,
        "content": content,
        "attachments": None,
        "read": read,
        "timestamp": BASE_TIME + timedelta(minutes=minutes),
    }
    return run(platform.documents.create("messages", None, data)).id


def test_half_limit():
    assert half_limit(None) is None
    assert half_limit(0) is None
    assert half_limit(5) == 3
    assert half_limit(10) == 5


def test_send_message(services, platform):
    form = MessageForm(receiver_id="u2", content="Hello", attachments=["file-1"])

    message = run(services.messages.send("u1", form))

    assert message.sender_id == "u1"
    assert message.receiver_id == "u2"
    assert message.attachments == ["file-1"]
    assert not message.read
    assert platform.documents.collections["messages"][message.id].data["attachments"] == '["file-1"]'


def test_send_broadcast_stores_null_receiver(services, platform):
    message = run(services.messages.send("boss", MessageForm(content="Team meeting at 10")))

    assert message.is_broadcast
    stored = platform.documents.collections["messages"][message.id].data
    assert "receiverId" in stored and stored["receiverId"] is None


def test_empty_message_is_invalid():
    with pytest.raises(ValueError):
        MessageForm(receiver_id="u2", content="")


def test_user_messages_merges_and_sorts(services, platform):
    ids = [
        seed(platform, "A", "B", "sent 1", 1),
        seed(platform, "A", "C", "sent 2", 5),
        seed(platform, "B", "A", "received 1", 2),
        seed(platform, "C", "A", "received 2", 4),
        seed(platform, "D", "A", "received 3", 6),
        seed(platform, "boss", None, "broadcast", 3),
    ]
    seed(platform, "B", "C", "not for A", 7)

    messages = run(services.messages.user_messages("A"))

    assert len(messages) == 6
    assert {m.id for m in messages} == set(ids)
    timestamps = [m.timestamp for m in messages]
    assert timestamps == sorted(timestamps, reverse=True)


def test_user_messages_self_message_counted_once(services, platform):
    seed(platform, "A", "A", "note to self", 1)

    assert len(run(services.messages.user_messages("A"))) == 1


def test_merge_messages_dedupes(services, platform):
    seed(platform, "A", "B", "hi", 1)
    batch = run(services.messages.list_all())

    assert len(merge_messages(batch, batch)) == 1


def test_conversation_half_split(services, platform):
    for minute in range(1, 5):
        seed(platform, "A", "B", f"a to b {minute}", minute)
    for minute in range(10, 14):
        seed(platform, "B", "A", f"b to a {minute}", minute)
    seed(platform, "A", "C", "elsewhere", 20)

    thread = run(services.messages.conversation("A", "B", limit=4))

    assert len(thread) == 4
    assert [m.content for m in thread] == ["b to a 13", "b to a 12", "a to b 4", "a to b 3"]


def test_conversation_one_sided_comes_back_short(services, platform):
    for minute in range(1, 6):
        seed(platform, "A", "B", f"a to b {minute}", minute)

    assert len(run(services.messages.conversation("A", "B", limit=4))) == 2
    assert len(run(services.messages.conversation("A", "B"))) == 5


def test_search(services, platform):
    seed(platform, "A", "B", "Receipt for the hotel", 1)
    seed(platform, "B", "A", "Which HOTEL?", 2)
    seed(platform, "A", "B", "Lunch", 3)
    seed(platform, "C", "D", "hotel elsewhere", 4)

    results = run(services.messages.search("A", "hotel"))

    assert [m.content for m in results] == ["Which HOTEL?", "Receipt for the hotel"]


def test_recent_contacts(services, platform):
    seed(platform, "A", "B", "1", 1)
    seed(platform, "A", "C", "2", 5)
    seed(platform, "D", "A", "3", 3)
    seed(platform, "B", "A", "4", 4)
    seed(platform, "boss", None, "broadcast", 6)

    assert run(services.messages.recent_contacts("A")) == ["C", "B", "D"]
    assert run(services.messages.recent_contacts("A", limit=2)) == ["C", "B"]


def test_unread_count(services, platform):
    seed(platform, "B", "A", "unread", 1)
    seed(platform, "C", "A", "read", 2, read=True)
    seed(platform, "boss", None, "broadcast", 3)
    seed(platform, "A", "B", "sent by A", 4)

    assert run(services.messages.unread_count("A")) == 2


def test_unread_count_is_zero_on_failure(services, platform, monkeypatch):
    async def broken_list(collection, query=None):
        raise PlatformError(503, "unavailable")

    monkeypatch.setattr(platform.documents, "list", broken_list)

    assert run(services.messages.unread_count("A")) == 0


def test_mark_read(services, platform):
    message_id = seed(platform, "B", "A", "hello", 1)

    assert run(services.messages.mark_read(message_id)).read
    with pytest.raises(NotFound):
        run(services.messages.mark_read("missing"))


def test_mark_many_read_partial_failure(services, platform, monkeypatch):
    ids = [seed(platform, "B", "A", str(n), n) for n in range(3)]
    original_update = platform.documents.update

    async def flaky_update(collection, document_id, data):
        if document_id == ids[1]:
            raise PlatformError(500, "write failed")
        return await original_update(collection, document_id, data)

    monkeypatch.setattr(platform.documents, "update", flaky_update)

    result = run(services.messages.mark_many_read(ids))

    assert (result.successful, result.total, result.failed) == (2, 3, 1)
    stored = platform.documents.collections["messages"]
    assert stored[ids[0]].data["read"] and stored[ids[2]].data["read"]
    assert not stored[ids[1]].data["read"]


def test_delete(services, platform):
    message_id = seed(platform, "A", "B", "bye", 1)

    assert run(services.messages.delete(message_id)) is True
    with pytest.raises(NotFound):
        run(services.messages.delete(message_id))


def test_malformed_message_document(services, platform):
    run(platform.documents.create("messages", "broken", {"senderId": "A", "content": "no timestamp"}))

    with pytest.raises(InvalidInput):
        run(services.messages.list_all())
