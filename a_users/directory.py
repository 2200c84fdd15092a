# a_users/directory.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import List, Optional

from django.conf import settings
from google.cloud import firestore as _fs
from google.cloud.firestore_v1.base_query import FieldFilter

from a_messaging.errors import NotFoundError, ValidationError, returns_result
from a_messaging.live import Feed, combine, constant, document_feed

from .contacts import ContactsProvider, normalize_phone
from .models import PRESENCE_ONLINE, User

logger = logging.getLogger(__name__)

USERS = "users"


@dataclass(frozen=True)
class SearchResult:
    """A registered user, or a device contact with no account (uid is None)."""
    display_name: str
    uid: Optional[str] = None
    phone: Optional[str] = None
    profile_picture_url: Optional[str] = None

    @property
    def is_registered(self) -> bool:
        return self.uid is not None


class UserDirectory:
    def __init__(self, db, storage=None):
        self.db = db
        self.storage = storage

    def ref(self, uid: str):
        return self.db.collection(USERS).document(uid)

    # -------------------------- Profile lifecycle --------------------------

    @returns_result("ensure profile")
    def ensure_profile(self, uid: str, username: str, phone: Optional[str] = None) -> User:
        """
        Create users/{uid} on first sign-in; on later sign-ins only flip presence to Online.
        """
        snap = self.ref(uid).get()
        if snap.exists:
            self.ref(uid).update({"presenceStatus": PRESENCE_ONLINE})
            user = User.from_snapshot(snap)
            user.presence_status = PRESENCE_ONLINE
            return user

        username = (username or "").strip()
        if not username:
            raise ValidationError("Username cannot be blank.")
        taken = (
            self.db.collection(USERS)
            .where(filter=FieldFilter("username_lowercase", "==", username.lower()))
            .limit(1)
            .stream()
        )
        if any(doc.id != uid for doc in taken):
            raise ValidationError(f"Username '{username}' is already taken.")

        user = User(uid=uid, username=username, phone=phone, presence_status=PRESENCE_ONLINE)
        self.ref(uid).set(user.to_dict())
        logger.info("Created profile for %s (%s)", uid, username)
        return user

    @returns_result("update profile")
    def update_profile(self, uid: str, username: Optional[str] = None, user_status: Optional[str] = None) -> None:
        updates = {}
        if username is not None and username.strip():
            updates["username"] = username.strip()
            updates["username_lowercase"] = username.strip().lower()
        if user_status is not None:
            updates["userSetStatus"] = user_status
        if not updates:
            return
        self.ref(uid).update(updates)

    @returns_result("save push token")
    def save_push_token(self, uid: str, token: str) -> None:
        self.ref(uid).update({"pushToken": token})
        logger.debug("Push token saved for %s", uid)

    @returns_result("update profile picture")
    def update_profile_picture(self, uid: str, file_obj) -> str:
        url = self.storage.upload_image(f"profile_pictures/{uid}/profile.jpg", file_obj)
        self.ref(uid).update({"profilePictureUrl": url})
        return url

    # -------------------------- Contacts --------------------------

    @returns_result("add contact")
    def add_contact(self, uid: str, contact_id: str) -> None:
        self.ref(uid).update({"contacts": _fs.ArrayUnion([contact_id])})

    @returns_result("remove contact")
    def remove_contact(self, uid: str, contact_id: str) -> None:
        self.ref(uid).update({"contacts": _fs.ArrayRemove([contact_id])})

    def watch_contacts(self, uid: str) -> Feed:
        """Live profiles of the user's saved contacts."""
        def resolve(user: Optional[User]):
            if user is None or not user.contacts:
                return constant([])
            feeds = [self.watch_user(contact_id) for contact_id in user.contacts]
            return combine(feeds, lambda *users: [u for u in users if u is not None])

        return self.watch_user(uid).switch_map(resolve)

    # -------------------------- Lookup / search --------------------------

    @returns_result("get user")
    def get_user(self, uid: str) -> User:
        user = User.from_snapshot(self.ref(uid).get())
        if user is None:
            raise NotFoundError(f"User {uid} not found.")
        return user

    def watch_user(self, uid: str) -> Feed:
        return document_feed(self.ref(uid), User.from_snapshot)

    @returns_result("search users")
    def search(self, query: str, self_id: Optional[str] = None,
               contacts: Optional[ContactsProvider] = None) -> List[SearchResult]:
        """
        Prefix search on username_lowercase, followed by matching device contacts
        that are not already represented (deduplicated by normalized phone).
        """
        query = (query or "").strip()
        if not query:
            return []

        needle = query.lower()
        q = (
            self.db.collection(USERS)
            .where(filter=FieldFilter("username_lowercase", ">=", needle))
            .where(filter=FieldFilter("username_lowercase", "<=", needle + "\uf8ff"))
            .limit(settings.CHAT_USER_SEARCH_LIMIT)
        )
        users = [User.from_snapshot(doc) for doc in q.stream()]
        users = [u for u in users if u is not None and u.uid != self_id]
        logger.debug("User search '%s' matched %d profiles", needle, len(users))

        results = [
            SearchResult(
                display_name=u.display_name,
                uid=u.uid,
                phone=u.phone,
                profile_picture_url=u.profile_picture_url,
            )
            for u in users
        ]
        if contacts is None:
            return results

        seen_phones = {normalize_phone(u.phone) for u in users}
        seen_phones.discard(None)
        for contact in contacts.read():
            phone = normalize_phone(contact.phone)
            if phone is None or phone in seen_phones:
                continue
            if needle not in contact.display_name.lower():
                continue
            seen_phones.add(phone)
            results.append(SearchResult(display_name=contact.display_name, phone=phone))
        return results
