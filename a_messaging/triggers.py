# a_messaging/triggers.py
from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from django.conf import settings
from google.cloud.firestore_v1.watch import ChangeType

from .models import MESSAGES, MessageStatus
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)


class MessageCreatedTrigger:
    """
    Feeds newly created messages to the NotificationDispatcher.

    Watches the whole `messages` collection group and treats every ADDED change
    as a creation, whatever the status has become since. A message can be read
    before the watch reports it and its recipients still have to be notified.

    Documents in the first snapshot that are still SENT were never processed
    (the dispatcher always moves a message past SENT), so they are dispatched
    too unless `skip_backlog` is set. Each message is dispatched at most once
    per process; invocations run on a thread pool and share no state.
    """

    def __init__(self, db, dispatcher: NotificationDispatcher, skip_backlog: bool = False,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.skip_backlog = skip_backlog
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.CHAT_DISPATCHER_WORKERS,
            thread_name_prefix="dispatch",
        )
        self._seen = set()
        self._lock = threading.Lock()
        self._initial = True
        self._watch = None

    def start(self):
        self._watch = self.db.collection_group(MESSAGES).on_snapshot(self.on_snapshot)
        logger.info("Watching for new messages")

    def stop(self):
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
        self.executor.shutdown(wait=True)

    def on_snapshot(self, docs, changes, read_time):
        with self._lock:
            initial, self._initial = self._initial, False
        if initial:
            self._handle_backlog(docs)
            return

        for change in changes:
            doc = change.document
            if change.type == ChangeType.REMOVED:
                with self._lock:
                    self._seen.discard(doc.reference.path)
                continue
            if change.type == ChangeType.ADDED:
                self._submit(doc)

    def _handle_backlog(self, docs):
        pending = []
        with self._lock:
            for doc in docs:
                self._seen.add(doc.reference.path)
                if (doc.to_dict() or {}).get("status") == MessageStatus.SENT:
                    pending.append(doc)
        if self.skip_backlog:
            logger.info("Skipping %d undelivered backlog messages", len(pending))
            return
        logger.info("Dispatching %d undelivered backlog messages", len(pending))
        for doc in pending:
            self._dispatch(doc)

    def _submit(self, doc):
        with self._lock:
            if doc.reference.path in self._seen:
                return
            self._seen.add(doc.reference.path)
        self._dispatch(doc)

    def _dispatch(self, doc):
        conversation_id = doc.reference.parent.parent.id
        self.executor.submit(
            self.dispatcher.handle_message_created,
            conversation_id,
            doc.id,
            doc.to_dict() or {},
        )
