"""Subscription broker: backlog replay, wildcard fan-out and the client protocol."""

import json

import pytest

from devrelay.services.stream_registry import StreamRegistry
from devrelay.services.subscription_broker import SubscriptionBroker


@pytest.fixture
def broker() -> SubscriptionBroker:
    return SubscriptionBroker()


@pytest.fixture
def registry(broker: SubscriptionBroker) -> StreamRegistry:
    return StreamRegistry(broker, capacity=100)


def test_connect_sends_current_sessions(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("s1", "build")
    subscriber = broker.connect("c1")
    frames = subscriber.drain()
    assert len(frames) == 1
    assert frames[0]["type"] == "sessions"
    assert [session["id"] for session in frames[0]["sessions"]] == ["s1"]
    assert isinstance(frames[0]["timestamp"], int)
    assert len(broker) == 1


def test_subscribe_replays_backlog_then_streams_live(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("build", "build")
    registry.append_output("build", "step 1\nstep 2\n")
    registry.append_output("build", "step 3\n")

    subscriber = broker.connect("c1")
    subscriber.drain()
    broker.subscribe(subscriber, "build")
    registry.append_output("build", "step 4\n")

    frames = subscriber.drain()
    assert [frame["type"] for frame in frames] == ["subscribed", "output", "output"]
    assert frames[1] == {
        "type": "output",
        "sessionId": "build",
        "sessionName": "build",
        "data": "step 1\nstep 2\nstep 3",
        "backlog": True,
        "timestamp": frames[1]["timestamp"],
    }
    assert frames[2]["data"] == "step 4\n"
    assert "backlog" not in frames[2]


def test_empty_backlog_is_not_replayed(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("quiet", "quiet")
    subscriber = broker.connect("c1")
    subscriber.drain()
    broker.subscribe(subscriber, "quiet")
    assert [frame["type"] for frame in subscriber.drain()] == ["subscribed"]


def test_subscribe_unknown_session_raises(broker: SubscriptionBroker, registry: StreamRegistry):
    subscriber = broker.connect("c1")
    broker.handle_message(subscriber, json.dumps({"type": "subscribe", "sessionId": "nope"}))
    frames = subscriber.drain()
    assert frames[-1]["type"] == "error"
    assert frames[-1]["data"] == "Session not found: nope"
    assert subscriber.subscriptions == set()


def test_wildcard_receives_every_session_in_emission_order(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("a", "alpha")
    registry.track_session("b", "beta")
    subscriber = broker.connect("c1")
    broker.subscribe_all(subscriber)
    subscriber.drain()

    registry.append_output("a", "from a\n")
    registry.append_output("b", "from b\n")
    registry.append_output("a", "again a\n")
    frames = subscriber.drain()
    assert [(frame["sessionId"], frame["data"]) for frame in frames] == [
        ("a", "from a\n"),
        ("b", "from b\n"),
        ("a", "again a\n"),
    ]


def test_wildcard_subscription_replays_every_backlog(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("a", "alpha")
    registry.track_session("b", "beta")
    registry.append_output("a", "old a\n")
    registry.append_output("b", "old b\n")
    subscriber = broker.connect("c1")
    subscriber.drain()

    broker.subscribe_all(subscriber)
    frames = subscriber.drain()
    assert frames[0]["type"] == "subscribed"
    assert frames[0]["sessionId"] == "*"
    assert [(frame["sessionId"], frame["backlog"]) for frame in frames[1:]] == [("a", True), ("b", True)]


def test_output_only_reaches_interested_subscribers(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("a", "alpha")
    registry.track_session("b", "beta")
    only_a = broker.connect("a-watcher")
    idle = broker.connect("idle")
    broker.subscribe(only_a, "a")
    only_a.drain()
    idle.drain()

    assert registry.append_output("b", "noise\n") is True
    assert broker.broadcast_output("a", "alpha", "signal\n") == 1
    assert [frame["data"] for frame in only_a.drain()] == ["signal\n"]
    assert idle.drain() == []


def test_unsubscribe_stops_delivery(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("a", "alpha")
    subscriber = broker.connect("c1")
    broker.handle_message(subscriber, {"type": "subscribe", "sessionId": "a"})
    broker.handle_message(subscriber, {"type": "unsubscribe", "sessionId": "a"})
    registry.append_output("a", "after\n")
    frames = subscriber.drain()
    assert [frame["type"] for frame in frames] == ["sessions", "subscribed", "unsubscribed"]


def test_list_request_resends_sessions(registry: StreamRegistry, broker: SubscriptionBroker):
    subscriber = broker.connect("c1")
    registry.track_session("a", "alpha")
    subscriber.drain()
    broker.handle_message(subscriber, '{"type": "list"}')
    frames = subscriber.drain()
    assert frames[0]["type"] == "sessions"
    assert frames[0]["sessions"][0]["name"] == "alpha"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        '{"type": "shout"}',
        '{"type": "subscribe"}',
        "[1, 2, 3]",
    ],
)
def test_malformed_frames_get_error_reply(broker: SubscriptionBroker, registry: StreamRegistry, raw: str):
    subscriber = broker.connect("c1")
    bystander = broker.connect("c2")
    subscriber.drain()
    bystander.drain()

    broker.handle_message(subscriber, raw)
    frames = subscriber.drain()
    assert len(frames) == 1
    assert frames[0]["type"] == "error"
    assert frames[0]["data"].startswith("Invalid message format")
    assert bystander.drain() == []
    assert len(broker) == 2


def test_disconnected_subscriber_receives_nothing(registry: StreamRegistry, broker: SubscriptionBroker):
    registry.track_session("a", "alpha")
    subscriber = broker.connect("c1")
    broker.subscribe(subscriber, "a")
    subscriber.drain()

    broker.disconnect(subscriber)
    assert registry.append_output("a", "late\n") is True
    assert subscriber.drain() == []
    assert len(broker) == 0


def test_disconnect_leaves_end_marker_for_writer(broker: SubscriptionBroker, registry: StreamRegistry):
    subscriber = broker.connect("c1")
    broker.disconnect(subscriber)

    assert subscriber.outbox.get_nowait() is None
    assert subscriber.outbox.empty()


def test_slow_subscriber_is_dropped_when_outbox_overflows():
    broker = SubscriptionBroker(outbox_frames=3)
    registry = StreamRegistry(broker, capacity=100)
    registry.track_session("a", "alpha")

    slow = broker.connect("slow")
    broker.subscribe_all(slow)
    fast = broker.connect("fast")
    broker.subscribe_all(fast)
    fast.drain()

    assert broker.broadcast_output("a", "alpha", "one\n") == 2
    fast.drain()
    assert broker.broadcast_output("a", "alpha", "two\n") == 1

    assert slow.closed is True
    assert broker.subscribers() == [fast]
    assert slow.drain() == []
    assert [frame["data"] for frame in fast.drain()] == ["two\n"]

    registry.append_output("a", "three\n")
    assert [frame["data"] for frame in fast.drain()] == ["three\n"]
