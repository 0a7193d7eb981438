import pytest

from printer_contexts.events import ContextRemoved, ContextUpdated, EventBus


def test_delivers_in_subscription_order():
    bus = EventBus()
    seen = []
    bus.subscribe(ContextRemoved, lambda e: seen.append(("first", e.context_id)))
    bus.subscribe("context-removed", lambda e: seen.append(("second", e.context_id)))

    bus.publish(ContextRemoved(context_id="a", was_active=False))
    assert seen == [("first", "a"), ("second", "a")]


def test_only_matching_type_is_delivered():
    bus = EventBus()
    seen = []
    bus.subscribe(ContextUpdated, seen.append)
    bus.publish(ContextRemoved(context_id="a", was_active=False))
    assert seen == []


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(ContextRemoved, seen.append)
    unsubscribe()
    bus.publish(ContextRemoved(context_id="a", was_active=False))
    assert seen == []
    assert bus.subscriber_count(ContextRemoved) == 0


def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(ContextRemoved, broken)
    bus.subscribe(ContextRemoved, seen.append)
    bus.publish(ContextRemoved(context_id="a", was_active=False))
    assert len(seen) == 1


def test_nested_publish_is_delivered_after_current_event():
    bus = EventBus()
    seen = []

    def first(event):
        seen.append(("first", event.name))
        if isinstance(event, ContextRemoved):
            bus.publish(ContextUpdated(context_id="b", patch={"name": "x"}))

    def second(event):
        seen.append(("second", event.name))

    for event_type in (ContextRemoved, ContextUpdated):
        bus.subscribe(event_type, first)
        bus.subscribe(event_type, second)

    bus.publish(ContextRemoved(context_id="a", was_active=True))
    assert seen == [
        ("first", "context-removed"),
        ("second", "context-removed"),
        ("first", "context-updated"),
        ("second", "context-updated"),
    ]


def test_unknown_event_name():
    with pytest.raises(ValueError):
        EventBus().subscribe("context-exploded", print)


def test_nested_publish_is_delivered_before_publish_returns():
    bus = EventBus()
    seen = []
    delivered_on_return = []

    def publish_follow_up(event):
        bus.publish(ContextUpdated(context_id=event.context_id, patch={"name": "x"}))
        delivered_on_return.append(list(seen))

    bus.subscribe(ContextRemoved, publish_follow_up)
    bus.subscribe(ContextRemoved, lambda e: seen.append(e.name))
    bus.subscribe(ContextUpdated, lambda e: seen.append(e.name))

    bus.publish(ContextRemoved(context_id="a", was_active=False))
    assert delivered_on_return == [["context-removed", "context-updated"]]
    assert seen == ["context-removed", "context-updated"]


def test_deeply_nested_publishes_keep_one_order_for_everyone():
    bus = EventBus()
    first_seen, last_seen = [], []

    def chain(event):
        first_seen.append(event.name)
        if isinstance(event, ContextRemoved):
            bus.publish(ContextUpdated(context_id="a", patch={"step": 1}))
        elif event.patch.get("step") == 1:
            bus.publish(ContextUpdated(context_id="a", patch={"step": 2}))

    for event_type in (ContextRemoved, ContextUpdated):
        bus.subscribe(event_type, chain)
        bus.subscribe(event_type, lambda e: last_seen.append(e.name))

    bus.publish(ContextRemoved(context_id="a", was_active=True))
    assert first_seen == last_seen == ["context-removed", "context-updated", "context-updated"]
