from .fake_firestore import FakeFirestore
from .fake_messaging import FakeMessaging
from .fake_storage import FakeBucket

__all__ = ["FakeFirestore", "FakeMessaging", "FakeBucket"]
