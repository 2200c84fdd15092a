import pytest
from google.cloud.firestore_v1.watch import ChangeType

from a_messaging.models import MessageStatus
from a_messaging.triggers import MessageCreatedTrigger
from tests.fakes.fake_firestore import FakeChange


@pytest.fixture
def chat(conversations, make_user):
    make_user("alice", "Alice")
    make_user("bob", "Bob", pushToken="tok-bob")
    return conversations.create_or_get_conversation("alice", "bob").value


def test_new_messages_are_dispatched_and_delivered(chat, messages, dispatcher, messaging, executor, db):
    trigger = MessageCreatedTrigger(db, dispatcher, executor=executor)
    trigger.start()

    mid = messages.append(chat, "alice", "ping").value

    assert executor.submitted[0][:2] == (chat, mid)
    assert executor.submitted[0][2]["text"] == "ping"
    assert [m.notification.body for m in messaging.sent] == ["ping"]
    assert db.raw(f"conversations/{chat}/messages/{mid}")["status"] == MessageStatus.DELIVERED
    trigger.stop()
    assert db.listener_count == 0


def test_backlog_is_dispatched_by_default(chat, messages, dispatcher, messaging, executor, db):
    old = messages.append(chat, "alice", "sent while the dispatcher was down").value

    trigger = MessageCreatedTrigger(db, dispatcher, executor=executor)
    trigger.start()
    new = messages.append(chat, "alice", "new").value

    assert [args[1] for args in executor.submitted] == [old, new]
    assert [m.notification.body for m in messaging.sent] == ["sent while the dispatcher was down", "new"]
    assert db.raw(f"conversations/{chat}/messages/{old}")["status"] == MessageStatus.DELIVERED
    trigger.stop()


def test_backlog_only_redispatches_undelivered_messages(chat, messages, dispatcher, executor, db):
    delivered = messages.append(chat, "alice", "handled before restart").value
    dispatcher.mark_delivered(db.document(f"conversations/{chat}/messages/{delivered}"))
    pending = messages.append(chat, "alice", "never handled").value

    trigger = MessageCreatedTrigger(db, dispatcher, executor=executor)
    trigger.start()

    assert [args[1] for args in executor.submitted] == [pending]
    trigger.stop()


def test_backlog_can_be_skipped(chat, messages, dispatcher, executor, db):
    old = messages.append(chat, "alice", "old").value

    trigger = MessageCreatedTrigger(db, dispatcher, skip_backlog=True, executor=executor)
    trigger.start()
    new = messages.append(chat, "alice", "new").value

    assert [args[1] for args in executor.submitted] == [new]
    assert db.raw(f"conversations/{chat}/messages/{old}")["status"] == MessageStatus.SENT
    trigger.stop()


def test_message_read_before_the_watch_reports_it_is_still_pushed(chat, messages, dispatcher, messaging, executor, db):
    trigger = MessageCreatedTrigger(db, dispatcher, executor=executor)
    trigger.on_snapshot([], [], None)

    mid = messages.append(chat, "alice", "quick reply").value
    messages.mark_as_read(chat, "bob")
    doc = db.document(f"conversations/{chat}/messages/{mid}").get()
    trigger.on_snapshot([doc], [FakeChange(ChangeType.ADDED, doc)], None)

    assert [m.notification.body for m in messaging.sent] == ["quick reply"]
    assert db.raw(f"conversations/{chat}/messages/{mid}")["status"] == MessageStatus.READ


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def handle_message_created(self, conversation_id, message_id, message=None):
        self.calls.append((conversation_id, message_id))


def test_each_message_is_dispatched_once(chat, messages, executor, db):
    dispatcher = RecordingDispatcher()
    trigger = MessageCreatedTrigger(db, dispatcher, executor=executor)
    trigger.start()

    mid = messages.append(chat, "alice", "once").value
    # unrelated edits re-deliver the snapshot without adding documents
    db.document(f"conversations/{chat}/messages/{mid}").update({"text": "once, edited"})
    messages.append(chat, "bob", "twice")

    assert [c[1] for c in dispatcher.calls].count(mid) == 1
    assert len(dispatcher.calls) == 2
    trigger.stop()
