"""Unit tests for the session event bus."""

import pytest

from quickedit.models.edit_context import EditContext
from quickedit.models.session import EditSession
from quickedit.orchestration.events import EventBus

from fakes import PARA1_ID


@pytest.fixture
def session():
    context = EditContext(selected_text="x", selected_unit_ids=[PARA1_ID], primary_unit_id=PARA1_ID)
    return EditSession(id="edit_events001", context=context, instruction="Fix")


class TestEventBus:
    """Test EventBus delivery."""

    def test_handler_receives_event_data(self, session):
        bus = EventBus()
        received = []
        bus.subscribe(received.append)

        bus.emit("streaming_chunk", session, chunk="abc")

        assert received[0].name == "streaming_chunk"
        assert received[0].session_id == "edit_events001"
        assert received[0].data == {"chunk": "abc"}

    def test_filtered_subscription(self, session):
        bus = EventBus()
        received = []
        bus.subscribe(received.append, events=["applied"])

        bus.emit("created", session)
        bus.emit("applied", session)

        assert [e.name for e in received] == ["applied"]

    def test_unknown_event_name_rejected(self):
        with pytest.raises(ValueError, match="finished"):
            EventBus().subscribe(lambda e: None, events=["finished"])

    def test_failing_handler_does_not_block_others(self, session):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("render failed")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.emit("error", session, error="boom")

        assert len(received) == 1

    def test_unsubscribe(self, session):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        bus.emit("created", session)
        assert received == []
