"""Tests for AsyncEventBus, EngineNotifier and the event handlers."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import pytest

from orchestrion.core.events.bus import AsyncEventBus, Event
from orchestrion.core.events.handlers import LoggingHandler, SinkHandler
from orchestrion.core.events.notifier import EngineNotifier
from orchestrion.core.events.types import EventType
from orchestrion.core.models.task import TaskStatus

# ============================================================================
# EVENT DATACLASS TESTS
# ============================================================================


class TestEvent:
    """Tests for the Event dataclass."""

    def test_defaults(self):
        """Test Event creation with only type."""
        before = time.time()
        event = Event(type=EventType.ENGINE_STARTED)

        assert len(event.id) == 36
        assert event.data == {}
        assert event.source == "unknown"
        assert event.correlation_id is None
        assert before <= event.timestamp <= time.time()

    def test_entity_id_read_from_data(self):
        event = Event(type=EventType.TASK_RUNNING, data={"entity_id": "t-1"})
        assert event.entity_id == "t-1"
        assert Event(type=EventType.ENGINE_STARTED).entity_id is None

    def test_to_dict_uses_type_value(self):
        event = Event(type=EventType.STEP_SKIPPED, data={"a": 1}, source="engine", id="e-1")
        data = event.to_dict()

        assert data["type"] == "step.skipped"
        assert data["id"] == "e-1"
        assert data["source"] == "engine"
        assert data["data"] == {"a": 1}


class TestEventTypeChannel:
    """Tests for EventType.channel."""

    @pytest.mark.parametrize(
        ("event_type", "channel"),
        [
            (EventType.TASK_RUNNING, "status"),
            (EventType.TASK_RETRYING, "status"),
            (EventType.STEP_SKIPPED, "status"),
            (EventType.WORKFLOW_PROGRESS, "progress"),
            (EventType.TASK_ERROR, "error"),
            (EventType.CIRCUIT_STATE_CHANGED, "system"),
            (EventType.ENGINE_STOPPED, "system"),
            (EventType.PROVIDER_HEALTH_CHECK, "system"),
        ],
    )
    def test_channel(self, event_type, channel):
        assert event_type.channel == channel


# ============================================================================
# BUS TESTS
# ============================================================================


class TestAsyncEventBusLifecycle:
    """Tests for start, stop and flush."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        bus = AsyncEventBus()
        assert not bus.is_running

        await bus.start()
        await bus.start()
        assert bus.is_running

        await bus.stop()
        await bus.stop()
        assert not bus.is_running

    @pytest.mark.asyncio
    async def test_flush_drains_when_not_running(self):
        bus = AsyncEventBus()
        handler = AsyncMock()
        bus.subscribe(EventType.ENGINE_STARTED, handler)

        bus.publish_sync(Event(type=EventType.ENGINE_STARTED))
        bus.publish_sync(Event(type=EventType.ENGINE_STARTED))
        await bus.flush()

        assert handler.await_count == 2
        assert bus.queue_size == 0

    def test_stats_returns_copy(self):
        bus = AsyncEventBus()
        stats = bus.stats
        stats["events_published"] = 99
        assert bus.stats["events_published"] == 0


class TestAsyncEventBusDelivery:
    """Tests for subscription and dispatch."""

    @pytest.mark.asyncio
    async def test_typed_and_wildcard_handlers(self, event_bus):
        typed = AsyncMock()
        wildcard = AsyncMock()
        event_bus.subscribe(EventType.TASK_COMPLETED, typed)
        event_bus.subscribe(None, wildcard)

        await event_bus.emit(EventType.TASK_COMPLETED, {"entity_id": "t-1"})
        await event_bus.emit(EventType.TASK_FAILED, {"entity_id": "t-2"})
        await event_bus.flush()

        assert typed.await_count == 1
        assert typed.await_args.args[0].entity_id == "t-1"
        assert wildcard.await_count == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self, event_bus):
        handler = AsyncMock()
        unsubscribe = event_bus.subscribe(EventType.TASK_RUNNING, handler)
        unsubscribe()
        unsubscribe()

        await event_bus.emit(EventType.TASK_RUNNING)
        await event_bus.flush()

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, event_bus):
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        event_bus.subscribe(EventType.TASK_RUNNING, broken)
        event_bus.subscribe(EventType.TASK_RUNNING, healthy)

        await event_bus.emit(EventType.TASK_RUNNING)
        await event_bus.flush()

        healthy.assert_awaited_once()
        assert event_bus.stats["handler_errors"] == 1

    @pytest.mark.asyncio
    async def test_publish_sync_drops_when_full(self):
        bus = AsyncEventBus(max_queue_size=1)

        assert bus.publish_sync(Event(type=EventType.TASK_RUNNING)) is True
        assert bus.publish_sync(Event(type=EventType.TASK_RUNNING)) is False

        assert bus.stats["events_published"] == 1
        assert bus.stats["events_dropped"] == 1
        await bus.flush()


# ============================================================================
# NOTIFIER TESTS
# ============================================================================


class TestEngineNotifier:
    """Tests for EngineNotifier payloads."""

    @pytest.mark.asyncio
    async def test_status_derives_event_type(self, notifier, event_bus, events):
        notifier.status("task", "t-1", TaskStatus.RUNNING, attempt=1)
        await event_bus.flush()

        assert events[0].type == EventType.TASK_RUNNING
        assert events[0].data == {
            "entity_id": "t-1",
            "kind": "task",
            "status": "running",
            "metadata": {"attempt": 1},
        }

    @pytest.mark.asyncio
    async def test_status_event_type_override(self, notifier, event_bus, events):
        notifier.status("task", "t-1", TaskStatus.PENDING, event_type=EventType.TASK_RETRYING)
        await event_bus.flush()

        assert events[0].type == EventType.TASK_RETRYING
        assert events[0].data["status"] == "pending"

    @pytest.mark.asyncio
    async def test_progress_and_error(self, notifier, event_bus, events):
        notifier.progress("workflow", "x-1", {"progress": 50})
        notifier.error("workflow", "x-1", "exploded", workflow_id="wf")
        await event_bus.flush()

        assert [e.type for e in events] == [EventType.WORKFLOW_PROGRESS, EventType.WORKFLOW_ERROR]
        assert events[0].data["progress"] == {"progress": 50}
        assert events[1].data["message"] == "exploded"
        assert events[1].data["context"] == {"workflow_id": "wf"}

    def test_without_bus_is_silent(self):
        notifier = EngineNotifier()
        notifier.status("task", "t-1", "running")
        notifier.system(EventType.ENGINE_STARTED)
        assert notifier.bus is None


# ============================================================================
# HANDLER TESTS
# ============================================================================


class TestSinkHandler:
    """Tests for routing events to a notification sink."""

    @pytest.mark.asyncio
    async def test_routes_by_channel(self, event_bus, notifier, recording_sink):
        event_bus.subscribe(None, SinkHandler(recording_sink))

        notifier.status("task", "t-1", TaskStatus.COMPLETED, duration=1.5)
        notifier.progress("task", "t-1", {"progress": 100})
        notifier.error("task", "t-1", "boom", attempts=3)
        notifier.system(EventType.ENGINE_STARTED, version="0.1.0")
        await event_bus.flush()

        assert recording_sink.statuses == [("t-1", "completed", {"duration": 1.5})]
        assert recording_sink.progress == [("t-1", {"progress": 100})]
        assert recording_sink.errors == [("t-1", "boom", {"attempts": 3})]

    @pytest.mark.asyncio
    async def test_failing_sink_counted(self, event_bus, notifier):
        sink = AsyncMock()
        sink.on_status_change.side_effect = RuntimeError("sink down")
        handler = SinkHandler(sink)
        event_bus.subscribe(None, handler)

        notifier.status("task", "t-1", TaskStatus.RUNNING)
        await event_bus.flush()

        assert handler.failures == 1
        assert event_bus.stats["handler_errors"] == 0

    def test_ignores_system_events(self, recording_sink):
        handler = SinkHandler(recording_sink)
        assert EventType.CIRCUIT_STATE_CHANGED not in handler.handled_events
        assert EventType.STEP_RETRYING in handler.handled_events


class TestLoggingHandler:
    """Tests for LoggingHandler filtering."""

    @pytest.mark.asyncio
    async def test_filters_by_type(self):
        handler = LoggingHandler([EventType.TASK_FAILED])
        handler.handle = AsyncMock()

        await handler(Event(type=EventType.TASK_RUNNING))
        await handler(Event(type=EventType.TASK_FAILED))

        handler.handle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_filter_handles_everything(self):
        handler = LoggingHandler()
        handler.handle = AsyncMock()

        await handler(Event(type=EventType.ENGINE_STOPPED))

        handler.handle.assert_awaited_once()
