# a_users/auth.py
import logging
from typing import Callable, Optional

from firebase_admin import auth as admin_auth

from a_messaging.errors import AuthenticationRequired, RemoteFailure, Result
from a_messaging.live import LiveValue

from .presence import PresenceTracker

logger = logging.getLogger(__name__)


class AuthSession:
    """
    The signed-in identity, verified with Firebase Auth.

    `identity` is a live value carrying the current uid (or None), so
    projectors can follow sign-in/sign-out without polling.
    """

    def __init__(self, presence: Optional[PresenceTracker] = None,
                 verify_id_token: Callable[..., dict] = admin_auth.verify_id_token):
        self.presence = presence
        self._verify_id_token = verify_id_token
        self.identity = LiveValue(None)

    def current_user_id(self) -> Optional[str]:
        return self.identity.get()

    def require_user_id(self) -> str:
        uid = self.current_user_id()
        if not uid:
            raise AuthenticationRequired()
        return uid

    def sign_in_with_id_token(self, id_token: str) -> Result:
        try:
            decoded = self._verify_id_token(id_token, check_revoked=True)
        except Exception as exc:
            logger.warning("Invalid ID token: %s", exc)
            return Result.failure(RemoteFailure("Invalid ID token", exc))

        uid = decoded["uid"]
        self.identity.set(uid)
        if self.presence is not None:
            try:
                self.presence.set_online(uid)
            except Exception:
                logger.exception("Could not mark %s online", uid)
        logger.info("Signed in as %s", uid)
        return Result.success(uid)

    def sign_out(self, at: Optional[int] = None):
        uid = self.current_user_id()
        if uid and self.presence is not None:
            try:
                self.presence.set_offline(uid, at)
            except Exception:
                logger.exception("Could not mark %s offline", uid)
        self.identity.set(None)
        logger.info("Signed out %s", uid)
