"""Audit trail subscriber.

Subscribed to the event bus at startup, it writes one ``audit_log`` row
per event in its own short session, so a booking or sweep that already
committed is never rolled back by an audit failure. Failures are logged
and dropped.
"""

from __future__ import annotations

import logging

from carsure.db.engine import async_session_factory
from carsure.models.audit import AuditLog
from carsure.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def audit_row(event: SystemEvent) -> AuditLog:
    """Map an event onto an audit row; emitter and event id go into ``data``."""
    data = event.model_dump(mode="json", include={"data"})["data"]
    data["_event_id"] = str(event.id)
    if event.source_module:
        data["_source"] = event.source_module
    return AuditLog(
        event_type=event.event_type.value,
        appointment_id=event.appointment_id,
        actor_id=event.actor_id or "system",
        actor_role=event.actor_role or "system",
        data=data,
    )


async def audit_on_event(event: SystemEvent) -> None:
    try:
        async with async_session_factory() as db:
            db.add(audit_row(event))
            await db.commit()
    except Exception:
        logger.exception(
            "Audit write failed for %s (appointment=%s)",
            event.event_type.value,
            event.appointment_id,
        )
