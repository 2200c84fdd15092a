# a_messaging/notifications.py
"""
Server-side fan-out for newly created messages.

One invocation per new conversations/{cid}/messages/{mid} document: resolve the
recipients, push to their devices through FCM, then advance the message to
DELIVERED. Every branch logs and swallows its own failure; nothing is retried.
"""
from __future__ import annotations
import logging
from typing import List, Optional

from django.conf import settings
from firebase_admin import messaging as fcm
from google.api_core.exceptions import FailedPrecondition

from .models import CONVERSATIONS, MESSAGES, USERS, MessageStatus

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, db, messaging=None):
        self.db = db
        # firebase_admin.messaging module (or anything exposing send / send_each_for_multicast)
        self.messaging = messaging or fcm

    def handle_message_created(self, conversation_id: str, message_id: str, message: Optional[dict] = None):
        try:
            self._dispatch(conversation_id, message_id, message)
        except Exception:
            logger.exception("Dispatch for %s/%s failed", conversation_id, message_id)

    def _dispatch(self, conversation_id: str, message_id: str, message: Optional[dict]):
        conv_ref = self.db.collection(CONVERSATIONS).document(conversation_id)
        msg_ref = conv_ref.collection(MESSAGES).document(message_id)

        if message is None:
            snap = msg_ref.get()
            if not snap.exists:
                logger.info("Message %s/%s no longer exists", conversation_id, message_id)
                return
            message = snap.to_dict() or {}

        conv_snap = conv_ref.get()
        if not conv_snap.exists:
            logger.info("Conversation %s no longer exists; skipping %s", conversation_id, message_id)
            return
        conversation = conv_snap.to_dict() or {}

        sender_id = message.get("senderId")
        sender_name = self._sender_name(sender_id)
        data = {"conversationId": conversation_id, "messageId": message_id}
        text = message.get("text") or ""

        try:
            if conversation.get("isGroup"):
                self._notify_group(conversation, sender_id, sender_name, text, data)
            else:
                self._notify_direct(conversation, sender_id, sender_name, text, data)
        except Exception:
            logger.exception("Push for %s/%s failed", conversation_id, message_id)

        # Delivered means "processed by the server", independent of the push outcome
        self.mark_delivered(msg_ref)

    def _sender_name(self, sender_id: Optional[str]) -> str:
        if sender_id:
            try:
                snap = self.db.collection(USERS).document(sender_id).get()
                if snap.exists:
                    name = (snap.to_dict() or {}).get("username")
                    if name:
                        return name
            except Exception:
                logger.exception("Sender lookup failed for %s", sender_id)
        return settings.CHAT_DEFAULT_SENDER_NAME

    def _notify_group(self, conversation: dict, sender_id, sender_name: str, text: str, data: dict):
        group_name = conversation.get("groupName") or settings.CHAT_DEFAULT_GROUP_NAME
        recipients = [p for p in (conversation.get("participants") or []) if p != sender_id]
        if not recipients:
            logger.info("Group %s has no recipients", data["conversationId"])
            return

        refs = [self.db.collection(USERS).document(uid) for uid in recipients]
        tokens: List[str] = []
        for snap in self.db.get_all(refs):
            if not snap.exists:
                continue
            token = (snap.to_dict() or {}).get("pushToken")
            if token:
                tokens.append(token)

        if not tokens:
            logger.warning("No push tokens for recipients of group %s", data["conversationId"])
            return

        response = self.messaging.send_each_for_multicast(fcm.MulticastMessage(
            tokens=tokens,
            notification=fcm.Notification(title=group_name, body=f"{sender_name}: {text}"),
            data=data,
        ))
        logger.info("Group notification sent to %d tokens (%d ok)", len(tokens), response.success_count)
        if response.failure_count > 0:
            logger.warning("Group notification failed for %d tokens", response.failure_count)

    def _notify_direct(self, conversation: dict, sender_id, sender_name: str, text: str, data: dict):
        recipient_id = next((p for p in (conversation.get("participants") or []) if p != sender_id), None)
        if not recipient_id:
            return

        snap = self.db.collection(USERS).document(recipient_id).get()
        token = (snap.to_dict() or {}).get("pushToken") if snap.exists else None
        if not token:
            logger.info("No push token for %s", recipient_id)
            return

        self.messaging.send(fcm.Message(
            token=token,
            notification=fcm.Notification(title=sender_name, body=text),
            data=data,
        ))
        logger.info("Direct notification sent to %s", recipient_id)

    def mark_delivered(self, msg_ref) -> bool:
        """
        Advance SENT -> DELIVERED unless the message already moved on.
        The write is conditioned on the snapshot it was decided from, so a
        reader flipping it to READ in between is never overwritten.
        """
        for _ in range(settings.CHAT_DELIVERY_MAX_ATTEMPTS):
            try:
                snap = msg_ref.get()
                if not snap.exists:
                    return False
                status = (snap.to_dict() or {}).get("status")
                if not MessageStatus.advances(status, MessageStatus.DELIVERED):
                    return False
                msg_ref.update(
                    {"status": MessageStatus.DELIVERED},
                    option=self.db.write_option(last_update_time=snap.update_time),
                )
                logger.info("Message %s marked DELIVERED", msg_ref.id)
                return True
            except FailedPrecondition:
                logger.debug("Message %s changed concurrently; re-reading", msg_ref.id)
            except Exception:
                logger.exception("Could not mark %s delivered", msg_ref.id)
                return False
        return False
