# a_messaging/conversations.py
from __future__ import annotations
import logging
from typing import Iterable, List, Optional

import shortuuid
from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore as _fs
from google.cloud.firestore_v1.base_query import FieldFilter

from a_users.models import User
from .errors import InvalidOperationError, NotFoundError, ValidationError, returns_result
from .live import Feed, constant, document_feed, query_feed
from .models import CONVERSATIONS, USERS, Conversation, ConversationView, Message, sorted_pair

logger = logging.getLogger(__name__)

GROUP_CREATED_PREVIEW = "Group created."


# -------------------------- Utilities --------------------------

def make_pair_key(uid_a: str, uid_b: str) -> str:
    return "#".join(sorted_pair(uid_a, uid_b))


def private_conversation_id(uid_a: str, uid_b: str) -> str:
    return f"priv_{make_pair_key(uid_a, uid_b)}"


def preview_fields(text: str) -> dict:
    """Denormalized last-message fields written alongside every new message."""
    return {
        "lastMessage": text,
        "lastMessageTimestamp": _fs.SERVER_TIMESTAMP,
    }


class ConversationStore:
    """Owns conversations/{id} documents: participants, group metadata, preview and pin."""

    def __init__(self, db, storage=None):
        self.db = db
        self.storage = storage

    @property
    def collection(self):
        return self.db.collection(CONVERSATIONS)

    def ref(self, conversation_id: str):
        return self.collection.document(conversation_id)

    # -------------------------- Direct conversations --------------------------

    @returns_result("create or get conversation")
    def create_or_get_conversation(self, self_id: str, target_id: str) -> str:
        """
        Return the id of the single direct conversation between the two users,
        creating it when missing. (A, B) and (B, A) always resolve to the same id.
        """
        if not self_id or not target_id or self_id == target_id:
            raise ValidationError("A direct conversation needs two distinct participants.")

        participants = sorted_pair(self_id, target_id)
        q = (
            self.collection
            .where(filter=FieldFilter("participants", "==", participants))
            .where(filter=FieldFilter("isGroup", "==", False))
            .limit(1)
        )
        docs = list(q.stream())
        if docs:
            return docs[0].id

        # Canonical id: concurrent creators collide on the same document instead of duplicating it
        conversation_id = private_conversation_id(self_id, target_id)
        payload = {
            "participants": participants,
            "pairKey": make_pair_key(self_id, target_id),
            "isGroup": False,
            "lastMessage": None,
            "lastMessageTimestamp": None,
        }
        try:
            self.ref(conversation_id).create(payload)
            logger.info("Created direct conversation %s", conversation_id)
        except AlreadyExists:
            logger.debug("Direct conversation %s created concurrently", conversation_id)
        return conversation_id

    # -------------------------- Groups --------------------------

    @returns_result("create group conversation")
    def create_group_conversation(self, name: str, member_ids: Iterable[str], creator_id: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name cannot be blank.")

        participants: List[str] = []
        for uid in list(member_ids) + [creator_id]:
            if uid and uid not in participants:
                participants.append(uid)
        if len(participants) < 2:
            raise ValidationError("A group needs at least two participants.")

        doc_ref = self.collection.document()
        doc_ref.set({
            "participants": participants,
            "isGroup": True,
            "groupName": name,
            "lastMessage": GROUP_CREATED_PREVIEW,
            "lastMessageTimestamp": _fs.SERVER_TIMESTAMP,
        })
        logger.info("Created group %s (%s) with %d participants", doc_ref.id, name, len(participants))
        return doc_ref.id

    def _require_group(self, conversation_id: str) -> Conversation:
        conversation = Conversation.from_snapshot(self.ref(conversation_id).get())
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        if not conversation.is_group:
            raise InvalidOperationError(f"Conversation {conversation_id} is not a group.")
        return conversation

    @returns_result("rename group")
    def rename_group(self, conversation_id: str, new_name: str) -> None:
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValidationError("Group name cannot be blank.")
        self._require_group(conversation_id)
        self.ref(conversation_id).update({"groupName": new_name})

    @returns_result("add participants")
    def add_participants(self, conversation_id: str, user_ids: Iterable[str]) -> None:
        user_ids = [uid for uid in user_ids if uid]
        self._require_group(conversation_id)
        if not user_ids:
            return
        self.ref(conversation_id).update({"participants": _fs.ArrayUnion(user_ids)})
        logger.info("Added %s to group %s", user_ids, conversation_id)

    @returns_result("remove participants")
    def remove_participants(self, conversation_id: str, user_ids: Iterable[str]) -> None:
        user_ids = [uid for uid in user_ids if uid]
        group = self._require_group(conversation_id)
        remaining = [p for p in group.participants if p not in user_ids]
        if len(remaining) < 2:
            raise ValidationError("A group needs at least two participants.")
        if len(remaining) == len(group.participants):
            return
        self.ref(conversation_id).update({"participants": _fs.ArrayRemove(user_ids)})
        logger.info("Removed %s from group %s", user_ids, conversation_id)

    @returns_result("update group image")
    def update_group_image(self, conversation_id: str, file_obj) -> str:
        self._require_group(conversation_id)
        url = self.storage.upload_image(f"group_images/{conversation_id}/{shortuuid.uuid()}.jpg", file_obj)
        self.ref(conversation_id).update({"groupImageUrl": url})
        return url

    # -------------------------- Preview / pin --------------------------

    @returns_result("update preview")
    def update_preview(self, conversation_id: str, text: str, server_timestamp=_fs.SERVER_TIMESTAMP) -> None:
        # last write wins; ordering is whatever the store applies per document
        self.ref(conversation_id).update({
            "lastMessage": text,
            "lastMessageTimestamp": server_timestamp,
        })

    @returns_result("pin message")
    def pin(self, conversation_id: str, message: Optional[Message]) -> None:
        """Set or clear the pinned message; the three fields always move together."""
        if message is None:
            fields = {"pinnedMessageId": None, "pinnedMessageText": None, "pinnedMessageSenderId": None}
        else:
            fields = {
                "pinnedMessageId": message.id,
                "pinnedMessageText": message.text,
                "pinnedMessageSenderId": message.sender_id,
            }
        self.ref(conversation_id).update(fields)

    # -------------------------- Reads --------------------------

    @returns_result("get conversation")
    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = Conversation.from_snapshot(self.ref(conversation_id).get())
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        return conversation

    def watch_conversation(self, conversation_id: str) -> Feed:
        """Live conversation document; emits None while it does not exist."""
        return document_feed(self.ref(conversation_id), Conversation.from_snapshot)

    def watch_conversations(self, uid: str) -> Feed:
        """Live list of the user's conversations, most recent first."""
        q = (
            self.collection
            .where(filter=FieldFilter("participants", "array_contains", uid))
            .order_by("lastMessageTimestamp", direction=_fs.Query.DESCENDING)
        )
        return query_feed(q, Conversation.from_snapshot)

    def watch_user(self, uid: Optional[str]) -> Feed:
        if not uid:
            return constant(None)
        return document_feed(self.db.collection(USERS).document(uid), User.from_snapshot)

    def watch_conversation_view(self, conversation_id: str, self_id: Optional[str]) -> Feed:
        """Conversation + the other participant's live profile (None for groups or missing docs)."""
        def resolve(conversation: Optional[Conversation]):
            if conversation is None:
                return constant(None)
            other_id = conversation.other_participant(self_id)
            if conversation.is_group or not other_id:
                return constant(ConversationView(conversation, None))
            return self.watch_user(other_id).map(lambda user: ConversationView(conversation, user))

        return self.watch_conversation(conversation_id).switch_map(resolve)
