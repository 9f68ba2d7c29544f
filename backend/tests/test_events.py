import pytest

from services import events as topics
from services.events import EventBus


def test_subscribers_receive_payloads():
    bus = EventBus()
    seen = []
    bus.subscribe(topics.DEVICE_UPDATE, seen.append)
    bus.publish(topics.DEVICE_UPDATE, {"id": "a"})
    bus.publish(topics.SCENE_UPDATE, {"active_scene_id": None})
    assert seen == [{"id": "a"}]


def test_unknown_topic_is_an_error():
    bus = EventBus()
    with pytest.raises(ValueError):
        bus.publish("LIGHTS_ON_FIRE", {})
    with pytest.raises(ValueError):
        bus.subscribe("LIGHTS_ON_FIRE", print)


def test_failing_subscriber_does_not_stop_the_others():
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("socket closed")

    bus.subscribe(topics.SETTINGS_UPDATE, broken)
    bus.subscribe(topics.SETTINGS_UPDATE, seen.append)
    bus.publish(topics.SETTINGS_UPDATE, {"color_mode": "mood"})
    assert seen == [{"color_mode": "mood"}]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(topics.CONNECTION_STATUS, seen.append)
    unsubscribe()
    unsubscribe()
    bus.publish(topics.CONNECTION_STATUS, {"connected": True})
    assert seen == []
