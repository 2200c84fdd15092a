# a_messaging/live.py
"""
Live feeds: a small observer/broadcast layer over Firestore snapshot listeners.

A Feed starts its upstream (a Firestore watch, or other feeds) when the first
subscriber arrives, replays the latest value to later subscribers, and tears the
upstream down exactly once when the last subscriber cancels. Firestore delivers
snapshots on its own watch threads, so every piece of shared state is guarded.
"""
from __future__ import annotations
import logging
import threading
from functools import partial
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger(__name__)

Emit = Callable[[Any], None]
Fail = Callable[[BaseException], None]
Teardown = Optional[Callable[[], None]]


class Subscription:
    """Cancelable handle. Cancel is idempotent and runs the teardown once."""

    def __init__(self, teardown: Teardown = None):
        self._teardown = teardown
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            teardown, self._teardown = self._teardown, None
        if teardown is not None:
            teardown()


class _Observer:
    def __init__(self, on_value: Emit, on_error: Optional[Fail]):
        self.on_value = on_value
        self.on_error = on_error
        self.subscription: Optional[Subscription] = None

    def deliver(self, value):
        if self.subscription is None or self.subscription.cancelled:
            return
        try:
            self.on_value(value)
        except Exception:
            logger.exception("Live feed subscriber failed")

    def fail(self, error: BaseException):
        if self.subscription is None or self.subscription.cancelled:
            return
        # the feed has already dropped this observer; just stop future deliveries
        self.subscription.cancel()
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception:
                logger.exception("Live feed error handler failed")


class _Operators:
    def subscribe(self, on_value: Emit, on_error: Optional[Fail] = None) -> Subscription:
        raise NotImplementedError

    def map(self, fn: Callable[[Any], Any]) -> "Feed":
        def start(emit, fail):
            return self.subscribe(_guarded(fn, emit, fail), fail).cancel
        return Feed(start)

    def switch_map(self, fn: Callable[[Any], "_Operators"]) -> "Feed":
        """Follow the feed produced by the latest upstream value, dropping the previous one."""
        def start(emit, fail):
            lock = threading.Lock()
            state = {"seq": 0, "inner": None, "closed": False}

            def on_value(value):
                try:
                    inner_feed = fn(value)
                except Exception as exc:
                    fail(exc)
                    return
                with lock:
                    if state["closed"]:
                        return
                    state["seq"] += 1
                    seq = state["seq"]
                    previous, state["inner"] = state["inner"], None

                def inner_emit(inner_value):
                    if state["seq"] == seq:
                        emit(inner_value)

                # subscribe before dropping the previous inner feed so upstreams
                # shared by both stay connected
                sub = inner_feed.subscribe(inner_emit, fail)
                if previous is not None:
                    previous.cancel()
                with lock:
                    if state["seq"] == seq and not state["closed"]:
                        state["inner"] = sub
                        return
                sub.cancel()

            outer = self.subscribe(on_value, fail)

            def teardown():
                outer.cancel()
                with lock:
                    state["closed"] = True
                    current, state["inner"] = state["inner"], None
                if current is not None:
                    current.cancel()
            return teardown
        return Feed(start)


def _guarded(fn, emit, fail):
    def on_value(value):
        try:
            result = fn(value)
        except Exception as exc:
            fail(exc)
            return
        emit(result)
    return on_value


class Feed(_Operators):
    """
    Ref-counted live value.

    `start(emit, fail)` connects the upstream and returns its teardown callable
    (or None). It runs on the first subscription and again after the feed went
    idle or failed.
    """

    def __init__(self, start: Callable[[Emit, Fail], Teardown]):
        self._start = start
        self._lock = threading.RLock()
        # serializes emissions so observers never see an older value after a newer one
        self._emit_lock = threading.RLock()
        self._observers: list = []
        self._active = False
        self._generation = 0
        self._teardown: Teardown = None
        self._has_value = False
        self._value = None
        self._version = 0

    def subscribe(self, on_value: Emit, on_error: Optional[Fail] = None) -> Subscription:
        observer = _Observer(on_value, on_error)
        observer.subscription = Subscription(partial(self._remove, observer))
        with self._lock:
            self._observers.append(observer)
            activate = not self._active
            replay = self._has_value
            value = self._value
        if activate:
            self._activate()
        elif replay:
            observer.deliver(value)
        return observer.subscription

    def _activate(self):
        with self._lock:
            self._active = True
            self._generation += 1
            generation = self._generation
        try:
            teardown = self._start(
                partial(self._emit, generation),
                partial(self._fail, generation),
            )
        except Exception as exc:
            self._fail(generation, exc)
            return
        with self._lock:
            if self._active and self._generation == generation:
                self._teardown = teardown
                return
        # everyone left (or the feed failed) while the upstream was starting
        if teardown is not None:
            teardown()

    def _remove(self, observer: _Observer):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)
            if self._observers or not self._active:
                return
            self._active = False
            teardown, self._teardown = self._teardown, None
            self._has_value = False
            self._value = None
        if teardown is not None:
            teardown()

    def _emit(self, generation: int, value):
        with self._emit_lock:
            with self._lock:
                if not self._active or generation != self._generation:
                    return
                self._value = value
                self._has_value = True
                self._version += 1
                version = self._version
                observers = list(self._observers)
            for observer in observers:
                if self._version != version:
                    # a newer value was emitted while delivering this one
                    return
                observer.deliver(value)

    def _fail(self, generation: int, error: BaseException):
        with self._lock:
            if not self._active or generation != self._generation:
                return
            self._active = False
            observers, self._observers = self._observers, []
            teardown, self._teardown = self._teardown, None
            self._has_value = False
            self._value = None
        logger.warning("Live feed closed: %s", error)
        if teardown is not None:
            teardown()
        for observer in observers:
            observer.fail(error)


class LiveValue(_Operators):
    """Mutable live value (search text, signed-in identity). Always has a current value."""

    def __init__(self, initial=None):
        self._lock = threading.RLock()
        self._value = initial
        self._observers: list = []

    def get(self):
        return self._value

    def set(self, value):
        with self._lock:
            if value == self._value:
                return
            self._value = value
            observers = list(self._observers)
        for observer in observers:
            if self._value is not value:
                return
            observer.deliver(value)

    def subscribe(self, on_value: Emit, on_error: Optional[Fail] = None) -> Subscription:
        observer = _Observer(on_value, on_error)
        observer.subscription = Subscription(partial(self._remove, observer))
        with self._lock:
            self._observers.append(observer)
            value = self._value
        observer.deliver(value)
        return observer.subscription

    def _remove(self, observer: _Observer):
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    @property
    def subscriber_count(self) -> int:
        return len(self._observers)


def constant(value) -> Feed:
    def start(emit, fail):
        emit(value)
        return None
    return Feed(start)


def combine(feeds: Sequence[_Operators], fn: Callable[..., Any]) -> Feed:
    """
    Fan-in: emit fn(*latest values) once every input has produced a value,
    then again whenever any input changes.
    """
    feeds = list(feeds)

    def start(emit, fail):
        if not feeds:
            emit(fn())
            return None
        # held across fn and emit: projections leave in the order their inputs arrived
        lock = threading.RLock()
        values = [None] * len(feeds)
        seen = [False] * len(feeds)

        def on_value(index, value):
            with lock:
                values[index] = value
                seen[index] = True
                if not all(seen):
                    return
                try:
                    result = fn(*values)
                except Exception as exc:
                    error = exc
                else:
                    emit(result)
                    return
            fail(error)

        subs = [feed.subscribe(partial(on_value, i), fail) for i, feed in enumerate(feeds)]

        def teardown():
            for sub in subs:
                sub.cancel()
        return teardown
    return Feed(start)


def document_feed(ref, mapper: Callable[[Any], Any]) -> Feed:
    """Live mapping of a single Firestore document. The mapper receives None or a snapshot."""
    def start(emit, fail):
        def on_snapshot(docs, changes, read_time):
            try:
                value = mapper(docs[0] if docs else None)
            except Exception as exc:
                fail(exc)
                return
            emit(value)
        watch = ref.on_snapshot(on_snapshot)
        return watch.unsubscribe
    return Feed(start)


def query_feed(query, mapper: Callable[[Any], Any]) -> Feed:
    """Live list for a Firestore query, re-emitted in full on every change."""
    def start(emit, fail):
        def on_snapshot(docs, changes, read_time):
            try:
                items = [item for item in (mapper(doc) for doc in docs) if item is not None]
            except Exception as exc:
                fail(exc)
                return
            emit(items)
        watch = query.on_snapshot(on_snapshot)
        return watch.unsubscribe
    return Feed(start)
