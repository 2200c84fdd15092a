import io

import pytest
from PIL import Image

from a_core.storage import ObjectStore
from a_messaging.conversations import ConversationStore
from a_messaging.messages import MessageStore
from a_messaging.notifications import NotificationDispatcher
from a_users.auth import AuthSession
from a_users.directory import UserDirectory
from a_users.presence import PresenceTracker

from tests.fakes import FakeBucket, FakeFirestore, FakeMessaging


class ImmediateExecutor:
    """Runs submitted work inline so dispatch is observable right after a write."""

    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append(args)
        fn(*args, **kwargs)

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def storage(bucket):
    return ObjectStore(bucket)


@pytest.fixture
def messaging():
    return FakeMessaging()


@pytest.fixture
def conversations(db, storage):
    return ConversationStore(db, storage)


@pytest.fixture
def messages(db, storage):
    return MessageStore(db, storage)


@pytest.fixture
def directory(db, storage):
    return UserDirectory(db, storage)


@pytest.fixture
def dispatcher(db, messaging):
    return NotificationDispatcher(db, messaging)


@pytest.fixture
def presence(db):
    return PresenceTracker(db)


@pytest.fixture
def executor():
    return ImmediateExecutor()


@pytest.fixture
def make_user(db):
    def make(uid, username=None, **fields):
        data = {
            "uid": uid,
            "username": username or uid,
            "username_lowercase": (username or uid).lower(),
            "presenceStatus": "Offline",
        }
        data.update(fields)
        db.seed(f"users/{uid}", data)
        return uid
    return make


@pytest.fixture
def auth_as(presence):
    """Signed-in AuthSession whose token is simply the uid."""
    def make(uid):
        session = AuthSession(presence=presence, verify_id_token=lambda token, check_revoked=False: {"uid": token})
        session.sign_in_with_id_token(uid)
        return session
    return make


@pytest.fixture
def png_file():
    buf = io.BytesIO()
    Image.new("RGBA", (4, 4), (255, 0, 0, 128)).save(buf, format="PNG")
    buf.seek(0)
    return buf
