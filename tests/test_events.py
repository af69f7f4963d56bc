"""Tests for the event bus."""

from pixelwatch.events import (
    EngineError,
    EventBus,
    MonitorEvent,
    Started,
    Stopped,
    VisualRegressionDetected,
)
from pixelwatch.models.snapshot import Target


class TestEventBus:

    def test_handler_receives_matching_events_only(self):
        bus = EventBus()
        received = []
        bus.subscribe(Stopped, received.append)

        bus.publish(Started(schedule="* * * * *", targets=1))
        bus.publish(Stopped())

        assert [e.name for e in received] == ["stopped"]

    def test_base_class_subscription_sees_everything(self):
        bus = EventBus()
        received = []
        bus.subscribe(MonitorEvent, received.append)

        bus.publish(Started(schedule="* * * * *", targets=1))
        bus.publish(EngineError(cause="RuntimeError: boom"))

        assert [e.name for e in received] == ["started", "error"]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(Stopped, received.append)
        unsubscribe()
        unsubscribe()
        bus.publish(Stopped())
        assert received == []

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(Stopped, broken)
        bus.subscribe(Stopped, received.append)
        bus.publish(Stopped())

        assert len(received) == 1

    def test_regression_event_payload(self, viewport):
        target = Target(url="https://example.com", viewport=viewport, selector="body")
        event = VisualRegressionDetected(target=target, diff_ratio=0.05, diff_image_ref="/tmp/d.png")
        assert event.name == "visual-regression-detected"
        assert event.target.key == target.key
        assert event.timestamp.endswith("Z")
