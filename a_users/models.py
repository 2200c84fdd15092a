# a_users/models.py
from dataclasses import dataclass, field
from typing import List, Optional

PRESENCE_ONLINE = "Online"
PRESENCE_OFFLINE = "Offline"


@dataclass
class User:
    """
    Profile document stored at users/{uid}.

    `username_lowercase` is always derived from `username`; it is the only
    field range-queried by user search.
    """
    uid: str
    username: Optional[str] = None
    username_lowercase: Optional[str] = None
    phone: Optional[str] = None
    profile_picture_url: Optional[str] = None
    push_token: Optional[str] = None
    user_status: Optional[str] = None
    presence_status: Optional[str] = PRESENCE_OFFLINE
    # epoch millis; only meaningful while presence_status != "Online"
    last_seen: Optional[int] = None
    contacts: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, uid: str, data: Optional[dict]) -> "User":
        data = data or {}
        username = data.get("username")
        return cls(
            uid=data.get("uid") or uid,
            username=username,
            username_lowercase=data.get("username_lowercase") or (username.lower() if username else None),
            phone=data.get("phone"),
            profile_picture_url=data.get("profilePictureUrl"),
            push_token=data.get("pushToken"),
            user_status=data.get("userSetStatus"),
            presence_status=data.get("presenceStatus", PRESENCE_OFFLINE),
            last_seen=data.get("lastSeenMillis"),
            contacts=list(data.get("contacts") or []),
        )

    @classmethod
    def from_snapshot(cls, snap) -> Optional["User"]:
        if snap is None or not snap.exists:
            return None
        return cls.from_dict(snap.id, snap.to_dict())

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "username": self.username,
            "username_lowercase": self.username.lower() if self.username else None,
            "phone": self.phone,
            "profilePictureUrl": self.profile_picture_url,
            "pushToken": self.push_token,
            "userSetStatus": self.user_status,
            "presenceStatus": self.presence_status,
            "lastSeenMillis": self.last_seen,
            "contacts": list(self.contacts),
        }

    @property
    def display_name(self) -> str:
        return self.username or self.phone or self.uid
