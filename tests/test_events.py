import pytest
from fakes import make_machine, make_scope

from capaws.events import Event, EventBus, EventRecorder

pytestmark = [pytest.mark.unit]


class TestEventBus:
    def test_is_event_recorder(self):
        assert isinstance(EventBus(), EventRecorder)

    def test_handlers_called_in_order(self):
        bus = EventBus()
        received: list[tuple[str, Event]] = []
        bus.on(lambda e: received.append(("first", e)))
        bus.on(lambda e: received.append(("second", e)))
        machine = make_machine()

        bus.event(machine, "CreatedInstance", "Created new node instance with id 'i-1'")

        assert [name for name, _ in received] == ["first", "second"]
        assert received[0][1] == Event(machine, "CreatedInstance", "Created new node instance with id 'i-1'")

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        received: list[Event] = []

        @bus.on
        def broken(event: Event) -> None:
            raise RuntimeError("boom")

        bus.on(received.append)

        bus.event(make_scope(), "DeletedInstance", "Terminated instance 'i-1'")

        assert len(received) == 1
        assert received[0].reason == "DeletedInstance"

    def test_clear(self):
        bus = EventBus()
        received: list[Event] = []
        bus.on(received.append)
        bus.clear()

        bus.event(make_scope(), "DeletedInstance", "gone")

        assert received == []
