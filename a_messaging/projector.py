# a_messaging/projector.py
"""
View-model projections over live conversation and message feeds.

Each projector fans several live inputs into one state value and recomputes it
whenever any input emits. Closing a projector cancels every subscription it
opened.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from .conversations import ConversationStore
from .errors import AuthenticationRequired, Result
from .live import LiveValue, combine, constant
from .messages import MessageStore
from .models import ConversationView, Message, MessageStatus

logger = logging.getLogger(__name__)


def filter_messages(messages: List[Message], query: str) -> List[Message]:
    query = (query or "").strip().lower()
    if not query:
        return list(messages)
    return [m for m in messages if query in (m.text or "").lower()]


@dataclass(frozen=True)
class ChatViewState:
    messages: List[Message] = field(default_factory=list)
    conversation: Optional[ConversationView] = None
    filtered_messages: List[Message] = field(default_factory=list)
    search_query: str = ""
    is_loading: bool = True
    error_message: Optional[str] = None


class ChatProjector:
    """
    State of one open conversation: messages, conversation detail and the
    search-filtered message list.

    While open, incoming messages from other participants are marked as read.
    The mark is edge-triggered: one batch each time the unread set goes from
    empty to non-empty, however many emissions follow.
    """

    def __init__(self, conversation_id: str, auth, conversations: ConversationStore, messages: MessageStore):
        self.conversation_id = conversation_id
        self.auth = auth
        self.conversations = conversations
        self.messages = messages
        self.reader_id = auth.current_user_id()
        self.state = LiveValue(ChatViewState())
        self._search = LiveValue("")
        self._unread_pending = False
        # feeds call back on their own watch threads; guards the unread edge and state
        self._lock = threading.RLock()
        self._subscription = None
        self.connect()

    def connect(self):
        """(Re)open the live inputs; the previous state is kept until the first new emission."""
        if self._subscription is not None:
            self._subscription.cancel()
        self._unread_pending = False
        feed = combine(
            [
                self.messages.subscribe(self.conversation_id),
                self.conversations.watch_conversation_view(self.conversation_id, self.reader_id),
                self._search,
            ],
            self._project,
        )
        self._subscription = feed.subscribe(self._publish, self._on_error)

    def _project(self, messages, conversation, query) -> ChatViewState:
        return ChatViewState(
            messages=messages,
            conversation=conversation,
            filtered_messages=filter_messages(messages, query),
            search_query=query,
            is_loading=False,
            error_message=self.state.get().error_message,
        )

    def _has_unread(self, messages: List[Message]) -> bool:
        if not self.reader_id:
            return False
        return any(m.sender_id != self.reader_id and m.status != MessageStatus.READ for m in messages)

    def _publish(self, state: ChatViewState):
        with self._lock:
            has_unread = self._has_unread(state.messages)
            rising = has_unread and not self._unread_pending
            self._unread_pending = has_unread
            self.state.set(state)
            if not rising:
                return
            # still under the lock: a concurrent emission must see the pending mark
            result = self.messages.mark_as_read(self.conversation_id, self.reader_id)
        if not result.ok:
            logger.warning("Could not mark %s as read: %s", self.conversation_id, result.error)
            # rearm the edge so the next emission retries
            with self._lock:
                self._unread_pending = False

    def _on_error(self, error: BaseException):
        logger.warning("Chat %s feed closed: %s", self.conversation_id, error)
        with self._lock:
            self._subscription = None
            self.state.set(replace(self.state.get(), is_loading=False, error_message=str(error)))

    # -------------------------- Actions --------------------------

    def set_search_query(self, query: str):
        self._search.set(query or "")

    def send(self, text: str) -> Result:
        if not self.reader_id:
            return self._surface(Result.failure(AuthenticationRequired()))
        return self._surface(self.messages.append(self.conversation_id, self.reader_id, text))

    def pin(self, message: Optional[Message]) -> Result:
        return self._surface(self.conversations.pin(self.conversation_id, message))

    def _surface(self, result: Result) -> Result:
        if not result.ok:
            with self._lock:
                self.state.set(replace(self.state.get(), error_message=str(result.error)))
        return result

    def clear_error(self):
        with self._lock:
            self.state.set(replace(self.state.get(), error_message=None))

    def close(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None


@dataclass(frozen=True)
class ConversationListState:
    conversations: List[ConversationView] = field(default_factory=list)
    is_loading: bool = True
    error_message: Optional[str] = None


class ConversationListProjector:
    """
    Conversation list for the signed-in user, each direct conversation joined
    with the other participant's live profile (presence, avatar).
    Follows the auth identity: signing out empties the list.
    """

    def __init__(self, auth, conversations: ConversationStore):
        self.auth = auth
        self.conversations = conversations
        self.state = LiveValue(ConversationListState())
        self._subscription = None
        self._lock = threading.RLock()
        # profile feeds by uid, reused across list emissions so a preview update
        # does not reopen a listener per participant
        self._profiles: Dict[str, object] = {}
        self.connect()

    def connect(self):
        if self._subscription is not None:
            self._subscription.cancel()
        feed = self.auth.identity.switch_map(self._for_user)
        self._subscription = feed.subscribe(self._publish, self._on_error)

    def _for_user(self, uid: Optional[str]):
        if not uid:
            return constant([])

        def join(conversations):
            self._prune_profiles(c.other_participant(uid) for c in conversations if not c.is_group)
            if not conversations:
                return constant([])
            return combine([self._view(c, uid) for c in conversations], lambda *views: list(views))

        return self.conversations.watch_conversations(uid).switch_map(join)

    def _view(self, conversation, uid: str):
        other_id = conversation.other_participant(uid)
        if conversation.is_group or not other_id:
            return constant(ConversationView(conversation, None))
        return self._profile(other_id).map(lambda user: ConversationView(conversation, user))

    def _profile(self, uid: str):
        with self._lock:
            feed = self._profiles.get(uid)
            if feed is None:
                feed = self._profiles[uid] = self.conversations.watch_user(uid)
            return feed

    def _prune_profiles(self, uids):
        keep = {uid for uid in uids if uid}
        with self._lock:
            for uid in [uid for uid in self._profiles if uid not in keep]:
                del self._profiles[uid]

    def _publish(self, views: List[ConversationView]):
        with self._lock:
            self.state.set(ConversationListState(conversations=views, is_loading=False))

    def _on_error(self, error: BaseException):
        logger.warning("Conversation list feed closed: %s", error)
        with self._lock:
            self._subscription = None
            self.state.set(replace(self.state.get(), is_loading=False, error_message=str(error)))

    def close(self):
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        with self._lock:
            self._profiles.clear()
