import logging

import pytest
from firebase_admin import exceptions as fb_exceptions

from a_messaging.models import MessageStatus
from a_messaging.notifications import NotificationDispatcher
from tests.fakes import FakeMessaging


@pytest.fixture
def group(conversations, make_user):
    make_user("alice", "Alice", pushToken="tok-alice")
    make_user("bob", "Bob", pushToken="tok-bob")
    make_user("carol", "Carol")
    make_user("dave", "Dave", pushToken="tok-dave")
    return conversations.create_group_conversation("Hikers", ["bob", "carol", "dave"], "alice").value


@pytest.fixture
def direct(conversations, make_user):
    make_user("alice", "Alice")
    make_user("bob", "Bob", pushToken="tok-bob")
    return conversations.create_or_get_conversation("alice", "bob").value


def status_of(db, cid, mid):
    return db.raw(f"conversations/{cid}/messages/{mid}")["status"]


def test_group_message_fans_out_in_one_multicast(group, messages, dispatcher, messaging, db):
    mid = messages.append(group, "alice", "summit at noon").value

    dispatcher.handle_message_created(group, mid)

    assert messaging.sent == []
    [multicast] = messaging.multicasts
    assert sorted(multicast.tokens) == ["tok-bob", "tok-dave"]
    assert multicast.notification.title == "Hikers"
    assert multicast.notification.body == "Alice: summit at noon"
    assert multicast.data == {"conversationId": group, "messageId": mid}
    assert status_of(db, group, mid) == MessageStatus.DELIVERED


def test_group_without_any_tokens_is_still_delivered(conversations, messages, dispatcher, messaging, make_user, db):
    make_user("alice", "Alice")
    make_user("bob", "Bob")
    cid = conversations.create_group_conversation("Quiet", ["bob"], "alice").value
    mid = messages.append(cid, "alice", "anyone?").value

    dispatcher.handle_message_created(cid, mid)

    assert messaging.multicasts == []
    assert status_of(db, cid, mid) == MessageStatus.DELIVERED


def test_direct_message_is_pushed_to_the_other_participant(direct, messages, dispatcher, messaging, db):
    mid = messages.append(direct, "alice", "hi bob").value

    dispatcher.handle_message_created(direct, mid)

    [sent] = messaging.sent
    assert sent.token == "tok-bob"
    assert sent.notification.title == "Alice"
    assert sent.notification.body == "hi bob"
    assert status_of(db, direct, mid) == MessageStatus.DELIVERED


def test_missing_sender_profile_uses_default_name(direct, messages, dispatcher, messaging, db):
    mid = messages.append(direct, "ghost", "boo").value
    db.document(f"conversations/{direct}").update({"participants": ["ghost", "bob"]})

    dispatcher.handle_message_created(direct, mid)

    assert messaging.sent[0].notification.title == "Someone"


def test_recipient_without_token_gets_no_push(direct, messages, dispatcher, messaging, db):
    mid = messages.append(direct, "bob", "hi alice").value

    dispatcher.handle_message_created(direct, mid)

    assert messaging.sent == []
    assert status_of(db, direct, mid) == MessageStatus.DELIVERED


def test_push_failure_still_marks_delivered(direct, messages, db):
    failing = FakeMessaging(fail_with=fb_exceptions.UnavailableError("fcm down"))
    mid = messages.append(direct, "alice", "hello").value

    NotificationDispatcher(db, failing).handle_message_created(direct, mid)

    assert status_of(db, direct, mid) == MessageStatus.DELIVERED


def test_group_multicast_failure_still_marks_delivered(group, messages, db):
    failing = FakeMessaging(fail_with=fb_exceptions.UnavailableError("fcm down"))
    mid = messages.append(group, "alice", "summit at noon").value

    NotificationDispatcher(db, failing).handle_message_created(group, mid)

    assert failing.multicasts == []
    assert status_of(db, group, mid) == MessageStatus.DELIVERED


def test_group_partial_failure_is_logged_and_delivered(group, messages, db, caplog):
    partial = FakeMessaging(invalid_tokens={"tok-dave"})
    mid = messages.append(group, "alice", "summit at noon").value

    with caplog.at_level(logging.WARNING, logger="a_messaging.notifications"):
        NotificationDispatcher(db, partial).handle_message_created(group, mid)

    assert len(partial.multicasts) == 1
    assert "failed for 1 tokens" in caplog.text
    assert status_of(db, group, mid) == MessageStatus.DELIVERED


def test_already_read_message_stays_read(direct, messages, dispatcher, messaging, db):
    mid = messages.append(direct, "alice", "hello").value
    messages.mark_as_read(direct, "bob")

    dispatcher.handle_message_created(direct, mid)

    assert len(messaging.sent) == 1
    assert status_of(db, direct, mid) == MessageStatus.READ


def test_missing_conversation_is_ignored(dispatcher, messaging, db):
    db.seed("conversations/gone/messages/m1", {"senderId": "alice", "text": "x", "status": "SENT"})

    dispatcher.handle_message_created("gone", "m1")

    assert messaging.sent == [] and messaging.multicasts == []
    assert status_of(db, "gone", "m1") == MessageStatus.SENT


def test_missing_message_is_ignored(direct, dispatcher, messaging):
    dispatcher.handle_message_created(direct, "never-written")
    assert messaging.sent == []


class RacingRef:
    """Message reference whose reader flips the message to READ right after each read."""

    def __init__(self, ref):
        self._ref = ref
        self.id = ref.id
        self.reads = 0

    def get(self):
        snap = self._ref.get()
        self.reads += 1
        if self.reads == 1:
            self._ref.update({"status": MessageStatus.READ})
        return snap

    def update(self, *args, **kwargs):
        return self._ref.update(*args, **kwargs)


def test_delivery_never_overwrites_a_concurrent_read(direct, messages, dispatcher, db):
    mid = messages.append(direct, "alice", "hello").value
    ref = RacingRef(db.document(f"conversations/{direct}/messages/{mid}"))

    assert dispatcher.mark_delivered(ref) is False
    assert ref.reads == 2
    assert status_of(db, direct, mid) == MessageStatus.READ
