# a_messaging/messages.py
from __future__ import annotations
import logging
import mimetypes
from typing import Optional

import shortuuid
from google.cloud import firestore as _fs
from google.cloud.firestore_v1.base_query import FieldFilter

from .conversations import preview_fields
from .errors import ValidationError, returns_result
from .live import Feed, query_feed
from .models import CONVERSATIONS, MESSAGES, Message, MessageStatus, MessageType

logger = logging.getLogger(__name__)

PREVIEW_FILE_NAME_MAX = 20
VIDEO_PREVIEW_FILE_NAME_MAX = 25
# Firestore rejects a write batch with more operations than this
FIRESTORE_BATCH_LIMIT = 500


def _media_preview(label: str, caption: Optional[str], file_name: str, limit: int) -> str:
    if caption and caption.strip():
        return f"{label}: {caption.strip()}"
    short = file_name[:limit]
    if len(file_name) > limit:
        short += "..."
    return f"{label}: {short}"


def image_preview_text(caption: Optional[str], file_name: str) -> str:
    return _media_preview(MessageType.IMAGE_LABEL, caption, file_name, PREVIEW_FILE_NAME_MAX)


def video_preview_text(caption: Optional[str], file_name: str) -> str:
    return _media_preview(MessageType.VIDEO_LABEL, caption, file_name, VIDEO_PREVIEW_FILE_NAME_MAX)


class MessageStore:
    """Owns conversations/{id}/messages: append, live feed, and read transitions."""

    def __init__(self, db, storage=None):
        self.db = db
        self.storage = storage

    def conversation_ref(self, conversation_id: str):
        return self.db.collection(CONVERSATIONS).document(conversation_id)

    def messages_ref(self, conversation_id: str):
        return self.conversation_ref(conversation_id).collection(MESSAGES)

    def _write(self, conversation_id: str, message: Message, preview: str) -> str:
        """
        Write the message and the parent conversation's preview in one batch.
        The preview update requires the conversation to exist, so a missing
        conversation fails the whole batch.
        """
        msg_ref = self.messages_ref(conversation_id).document(message.id)
        payload = message.to_dict()
        payload["timestamp"] = _fs.SERVER_TIMESTAMP

        batch = self.db.batch()
        batch.set(msg_ref, payload)
        batch.update(self.conversation_ref(conversation_id), preview_fields(preview))
        batch.commit()
        logger.info("Message %s appended to %s by %s", message.id, conversation_id, message.sender_id)
        return message.id

    @returns_result("send message")
    def append(self, conversation_id: str, sender_id: str, text: str) -> str:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text cannot be blank.")
        # id is allocated client-side, before the write completes
        message_id = self.messages_ref(conversation_id).document().id
        message = Message(id=message_id, sender_id=sender_id, text=text, status=MessageStatus.SENT)
        return self._write(conversation_id, message, text)

    @returns_result("send image")
    def send_image(self, conversation_id: str, sender_id: str, file_obj, file_name: str,
                   caption: Optional[str] = None) -> str:
        message_id = self.messages_ref(conversation_id).document().id
        url = self.storage.upload_image(f"images/{conversation_id}/{shortuuid.uuid()}.jpg", file_obj)
        message = Message(
            id=message_id,
            sender_id=sender_id,
            text=(caption or "").strip() or MessageType.IMAGE_LABEL,
            status=MessageStatus.SENT,
            type=MessageType.IMAGE,
            media_url=url,
            file_name=file_name,
        )
        return self._write(conversation_id, message, image_preview_text(caption, file_name))

    @returns_result("send video")
    def send_video(self, conversation_id: str, sender_id: str, file_obj, file_name: str,
                   caption: Optional[str] = None, thumbnail: Optional[bytes] = None,
                   duration_ms: Optional[int] = None) -> str:
        """
        Upload a video (and its optional JPEG thumbnail) and append a VIDEO message.
        A failed thumbnail upload is logged and the message is sent without one.
        """
        message_id = self.messages_ref(conversation_id).document().id
        file_id = shortuuid.uuid()
        content_type = mimetypes.guess_type(file_name)[0] or "video/mp4"
        extension = (mimetypes.guess_extension(content_type) or ".mp4").lstrip(".")
        url = self.storage.upload_bytes(f"videos/{conversation_id}/{file_id}.{extension}", file_obj.read(), content_type)

        thumbnail_url = None
        if thumbnail:
            try:
                thumbnail_url = self.storage.upload_bytes(
                    f"video_thumbnails/{conversation_id}/{file_id}_thumb.jpg", thumbnail, "image/jpeg"
                )
            except Exception as exc:
                logger.warning("Thumbnail upload for %s failed, sending without it: %s", message_id, exc)

        message = Message(
            id=message_id,
            sender_id=sender_id,
            text=(caption or "").strip() or MessageType.VIDEO_LABEL,
            status=MessageStatus.SENT,
            type=MessageType.VIDEO,
            media_url=url,
            file_name=file_name,
            thumbnail_url=thumbnail_url,
            duration_ms=duration_ms,
        )
        return self._write(conversation_id, message, video_preview_text(caption, file_name))

    def subscribe(self, conversation_id: str) -> Feed:
        """Full message list ordered by server timestamp, re-emitted on every change."""
        q = self.messages_ref(conversation_id).order_by("timestamp", direction=_fs.Query.ASCENDING)
        return query_feed(q, Message.from_snapshot)

    @returns_result("mark messages as read")
    def mark_as_read(self, conversation_id: str, reader_id: str) -> int:
        """
        Flip every SENT/DELIVERED message written by someone else to READ.
        Returns how many messages changed; no write at all when nothing matches.
        Writes go out in batches of at most FIRESTORE_BATCH_LIMIT, each atomic on
        its own; a failure part way leaves the earlier chunks READ.
        """
        q = self.messages_ref(conversation_id).where(
            filter=FieldFilter("status", "in", [MessageStatus.SENT, MessageStatus.DELIVERED])
        )
        unread = [snap for snap in q.stream() if (snap.to_dict() or {}).get("senderId") != reader_id]
        if not unread:
            logger.debug("No unread messages in %s for %s", conversation_id, reader_id)
            return 0

        chunks = [unread[i:i + FIRESTORE_BATCH_LIMIT] for i in range(0, len(unread), FIRESTORE_BATCH_LIMIT)]
        for chunk in chunks:
            batch = self.db.batch()
            for snap in chunk:
                batch.update(snap.reference, {"status": MessageStatus.READ})
            batch.commit()
        if len(chunks) > 1:
            logger.debug("Marked %s as read in %d batches", conversation_id, len(chunks))
        logger.info("%d messages in %s marked as read by %s", len(unread), conversation_id, reader_id)
        return len(unread)
