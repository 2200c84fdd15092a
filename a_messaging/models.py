# a_messaging/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from a_users.models import User

CONVERSATIONS = "conversations"
MESSAGES = "messages"
USERS = "users"


class MessageStatus:
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"

    ORDER = (SENT, DELIVERED, READ)

    @classmethod
    def rank(cls, status: Optional[str]) -> int:
        try:
            return cls.ORDER.index(status)
        except ValueError:
            return 0

    @classmethod
    def advances(cls, current: Optional[str], target: str) -> bool:
        """True if moving from `current` to `target` goes forward. Status never regresses."""
        return cls.rank(target) > cls.rank(current)


class MessageType:
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    IMAGE_LABEL = "📷 Image"
    VIDEO_LABEL = "🎥 Video"


def sorted_pair(uid_a: str, uid_b: str) -> List[str]:
    return sorted([uid_a, uid_b])


@dataclass(frozen=True)
class PinnedMessage:
    message_id: str
    text: str
    sender_id: str


@dataclass
class Conversation:
    id: str
    participants: List[str] = field(default_factory=list)
    is_group: bool = False
    group_name: Optional[str] = None
    group_image_url: Optional[str] = None
    last_message: Optional[str] = None
    last_message_timestamp: Optional[datetime] = None
    pinned: Optional[PinnedMessage] = None

    @classmethod
    def from_snapshot(cls, snap) -> Optional["Conversation"]:
        if snap is None or not snap.exists:
            return None
        data = snap.to_dict() or {}
        pinned = None
        # The three pinned fields are written together; treat a partial set as unpinned
        if data.get("pinnedMessageId") and data.get("pinnedMessageSenderId") is not None:
            pinned = PinnedMessage(
                message_id=data["pinnedMessageId"],
                text=data.get("pinnedMessageText") or "",
                sender_id=data["pinnedMessageSenderId"],
            )
        return cls(
            id=snap.id,
            participants=list(data.get("participants") or []),
            is_group=bool(data.get("isGroup") or False),
            group_name=data.get("groupName"),
            group_image_url=data.get("groupImageUrl"),
            last_message=data.get("lastMessage"),
            last_message_timestamp=data.get("lastMessageTimestamp"),
            pinned=pinned,
        )

    def other_participant(self, self_id: str) -> Optional[str]:
        if self.is_group:
            return None
        return next((p for p in self.participants if p != self_id), None)


@dataclass
class Message:
    id: str
    sender_id: str
    text: str
    timestamp: Optional[datetime] = None
    status: str = MessageStatus.SENT
    type: str = MessageType.TEXT
    media_url: Optional[str] = None
    file_name: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_snapshot(cls, snap) -> Optional["Message"]:
        if snap is None or not snap.exists:
            return None
        data = snap.to_dict() or {}
        return cls(
            id=snap.id,
            sender_id=data.get("senderId") or "",
            text=data.get("text") or "",
            timestamp=data.get("timestamp"),
            status=data.get("status") or MessageStatus.SENT,
            type=data.get("type") or MessageType.TEXT,
            media_url=data.get("mediaUrl"),
            file_name=data.get("fileName"),
            thumbnail_url=data.get("thumbnailUrl"),
            duration_ms=data.get("duration"),
        )

    def to_dict(self) -> dict:
        # timestamp is left to the caller: it is always the server sentinel on create
        return {
            "id": self.id,
            "senderId": self.sender_id,
            "text": self.text,
            "status": self.status,
            "type": self.type,
            "mediaUrl": self.media_url,
            "fileName": self.file_name,
            "thumbnailUrl": self.thumbnail_url,
            "duration": self.duration_ms,
        }


@dataclass
class ConversationView:
    """Conversation plus the other participant's profile (None for groups). Never persisted."""
    conversation: Conversation
    other_participant: Optional[User] = None
