from a_messaging.live import Feed, LiveValue, Subscription, combine, constant, document_feed


class CountingSource:
    """Feed upstream that records starts/stops and lets the test push values."""

    def __init__(self):
        self.starts = 0
        self.stops = 0
        self.emit = None
        self.fail = None
        self.feed = Feed(self._start)

    def _start(self, emit, fail):
        self.starts += 1
        self.emit = emit
        self.fail = fail
        return self._stop

    def _stop(self):
        self.stops += 1


def test_subscription_cancel_runs_teardown_once():
    calls = []
    sub = Subscription(lambda: calls.append(1))
    sub.cancel()
    sub.cancel()
    assert calls == [1]
    assert sub.cancelled


def test_feed_starts_once_and_tears_down_when_last_subscriber_leaves():
    source = CountingSource()
    first = source.feed.subscribe(lambda v: None)
    second = source.feed.subscribe(lambda v: None)
    assert source.starts == 1

    first.cancel()
    assert source.stops == 0
    second.cancel()
    second.cancel()
    assert source.stops == 1


def test_late_subscriber_gets_latest_value():
    source = CountingSource()
    source.feed.subscribe(lambda v: None)
    source.emit("a")
    source.emit("b")

    seen = []
    source.feed.subscribe(seen.append)
    assert seen == ["b"]


def test_no_delivery_after_cancel():
    source = CountingSource()
    seen = []
    keep = source.feed.subscribe(lambda v: None)
    sub = source.feed.subscribe(seen.append)
    source.emit(1)
    sub.cancel()
    source.emit(2)
    assert seen == [1]
    keep.cancel()


def test_emit_from_previous_generation_is_ignored():
    source = CountingSource()
    sub = source.feed.subscribe(lambda v: None)
    stale_emit = source.emit
    sub.cancel()

    seen = []
    source.feed.subscribe(seen.append)
    stale_emit("stale")
    source.emit("fresh")
    assert seen == ["fresh"]


def test_failure_closes_feed_and_notifies_subscribers():
    source = CountingSource()
    errors, values = [], []
    source.feed.subscribe(values.append, errors.append)
    source.fail(RuntimeError("permission denied"))
    source.emit("late")

    assert [str(e) for e in errors] == ["permission denied"]
    assert values == []
    assert source.stops == 1


def test_map_applies_function_and_reports_errors():
    source = CountingSource()
    seen, errors = [], []
    source.feed.map(lambda v: 10 // v).subscribe(seen.append, errors.append)
    source.emit(2)
    source.emit(0)
    assert seen == [5]
    assert len(errors) == 1
    assert source.stops == 1


def test_combine_waits_for_every_input():
    left, right = CountingSource(), CountingSource()
    seen = []
    sub = combine([left.feed, right.feed], lambda a, b: (a, b)).subscribe(seen.append)
    left.emit(1)
    assert seen == []
    right.emit("x")
    left.emit(2)
    assert seen == [(1, "x"), (2, "x")]

    sub.cancel()
    assert (left.stops, right.stops) == (1, 1)


def test_combine_of_nothing_emits_once():
    seen = []
    combine([], lambda: []).subscribe(seen.append)
    assert seen == [[]]


def test_switch_map_drops_previous_inner_feed():
    inners = {"a": CountingSource(), "b": CountingSource()}
    selector = LiveValue("a")
    seen = []
    sub = selector.switch_map(lambda key: inners[key].feed).subscribe(seen.append)

    inners["a"].emit("from a")
    selector.set("b")
    assert inners["a"].stops == 1
    inners["a"].emit("ignored")
    inners["b"].emit("from b")
    assert seen == ["from a", "from b"]

    sub.cancel()
    assert inners["b"].stops == 1
    assert selector.subscriber_count == 0


def test_switch_map_keeps_a_shared_inner_feed_connected():
    shared = CountingSource()
    selector = LiveValue(1)
    seen = []
    sub = selector.switch_map(lambda n: shared.feed.map(lambda v: (n, v))).subscribe(seen.append)

    shared.emit("x")
    selector.set(2)

    assert (shared.starts, shared.stops) == (1, 0)
    assert seen == [(1, "x"), (2, "x")]
    sub.cancel()
    assert shared.stops == 1


def test_live_value_skips_equal_values():
    value = LiveValue(1)
    seen = []
    value.subscribe(seen.append)
    value.set(1)
    value.set(2)
    assert seen == [1, 2]
    assert value.get() == 2


def test_constant_replays_to_each_subscriber():
    feed = constant("x")
    a, b = [], []
    feed.subscribe(a.append)
    feed.subscribe(b.append)
    assert a == ["x"] and b == ["x"]


def test_document_feed_releases_the_watch_exactly_once(db):
    db.seed("users/u1", {"username": "ann"})
    seen = []
    feed = document_feed(db.document("users/u1"), lambda snap: snap.to_dict()["username"])
    sub = feed.subscribe(seen.append)
    assert db.listener_count == 1

    db.document("users/u1").update({"username": "anna"})
    sub.cancel()
    sub.cancel()
    db.document("users/u1").update({"username": "annie"})

    assert seen == ["ann", "anna"]
    assert db.listener_count == 0
    assert db.watches[0].unsubscribe_calls == 1


def test_subscriber_exception_does_not_break_other_subscribers():
    source = CountingSource()
    seen = []

    def broken(value):
        raise ValueError("boom")

    source.feed.subscribe(broken)
    source.feed.subscribe(seen.append)
    source.emit("v")
    assert seen == ["v"]
