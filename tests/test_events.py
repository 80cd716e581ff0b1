"""Tests for the in-process event bus and the audit subscriber."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from carsure.events import bus
from carsure.events.bus import EventBus
from carsure.events.audit import audit_on_event, audit_row
from carsure.models.audit import AuditLog
from carsure.schemas.events import EventType, SystemEvent


def _event(event_type: EventType = EventType.APPOINTMENT_BOOKED) -> SystemEvent:
    return SystemEvent(
        event_type=event_type,
        appointment_id=uuid.uuid4(),
        actor_id="u1",
        actor_role="user",
        data={"time": "09:00"},
        source_module="tests",
    )


@pytest_asyncio.fixture
async def event_bus():
    b = EventBus()
    await b.start()
    yield b
    await b.stop()


class TestEventBus:
    @pytest.mark.asyncio()
    async def test_subscriber_receives_events_in_order(self, event_bus):
        received: list[SystemEvent] = []

        async def handler(event: SystemEvent) -> None:
            received.append(event)

        event_bus.subscribe(handler)
        await event_bus.emit(_event(EventType.APPOINTMENT_BOOKED))
        await event_bus.emit(_event(EventType.APPOINTMENT_EXPIRED))
        await event_bus.stop()

        assert [e.event_type for e in received] == [EventType.APPOINTMENT_BOOKED, EventType.APPOINTMENT_EXPIRED]

    @pytest.mark.asyncio()
    async def test_subscribe_twice_delivers_once(self, event_bus):
        handler = AsyncMock()
        handler.__name__ = "handler"
        event_bus.subscribe(handler)
        event_bus.subscribe(handler)
        await event_bus.emit(_event())
        await event_bus.stop()

        handler.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_failing_handler_isolated(self, event_bus):
        received: list[SystemEvent] = []

        async def broken(event: SystemEvent) -> None:
            raise RuntimeError("boom")

        async def fine(event: SystemEvent) -> None:
            received.append(event)

        event_bus.subscribe(broken)
        event_bus.subscribe(fine)
        await event_bus.emit(_event())
        await event_bus.emit(_event())
        await event_bus.stop()

        assert len(received) == 2

    @pytest.mark.asyncio()
    async def test_unsubscribe(self, event_bus):
        handler = AsyncMock()
        handler.__name__ = "handler"
        event_bus.subscribe(handler)
        event_bus.unsubscribe(handler)
        await event_bus.emit(_event())
        await event_bus.stop()

        handler.assert_not_awaited()
        assert event_bus.handlers == []

    @pytest.mark.asyncio()
    async def test_emit_without_start_still_delivers(self):
        b = EventBus()
        handler = AsyncMock()
        handler.__name__ = "handler"
        b.subscribe(handler)

        await b.emit(_event())
        await b.stop()

        handler.assert_awaited_once()

    def test_module_functions_bound_to_singleton(self):
        assert bus.emit == bus.event_bus.emit
        assert bus.subscribe == bus.event_bus.subscribe


class TestAuditSubscriber:
    @pytest.mark.asyncio()
    async def test_persists_event(self):
        db = AsyncMock()
        db.add = MagicMock()
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = db
        event = _event()

        with patch("carsure.events.audit.async_session_factory", factory):
            await audit_on_event(event)

        row = db.add.call_args.args[0]
        assert isinstance(row, AuditLog)
        assert row.event_type == "appointment.booked"
        assert row.appointment_id == event.appointment_id
        assert row.data == {"time": "09:00", "_event_id": str(event.id), "_source": "tests"}
        db.commit.assert_awaited_once()

    def test_system_event_without_actor(self):
        event = SystemEvent(event_type=EventType.SYSTEM_MAINTENANCE, data={"cancelled": 2})

        row = audit_row(event)

        assert row.actor_id == "system"
        assert row.actor_role == "system"
        assert row.appointment_id is None
        assert "_source" not in row.data
        assert row.data["cancelled"] == 2

    @pytest.mark.asyncio()
    async def test_failure_swallowed(self):
        db = AsyncMock()
        db.add = MagicMock()
        db.commit.side_effect = RuntimeError("db down")
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = db

        with patch("carsure.events.audit.async_session_factory", factory):
            await audit_on_event(_event())
