"""Tests for table definitions the booking guarantees depend on.

Covers:
- The partial unique index that makes one slot bookable once
- The migration creating the same index predicate as the model
- Notification text wide enough for prefixed admin warnings
"""

from __future__ import annotations

import re
from pathlib import Path

from sqlalchemy import Text
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex

from carsure.models.appointment import Appointment
from carsure.models.enums import ACTIVE_STATUSES, AppointmentStatus
from carsure.models.notification import Notification

MIGRATION = Path(__file__).resolve().parents[1] / "alembic" / "versions" / "001_initial_schema.py"
SLOT_INDEX = "uq_appointments_active_slot"


def _slot_index():
    return next(i for i in Appointment.__table__.indexes if i.name == SLOT_INDEX)


def _quoted_statuses(sql: str) -> set[str]:
    return set(re.findall(r"'([a-z_]+)'", sql))


class TestActiveSlotIndex:
    def test_slot_holding_statuses(self):
        assert ACTIVE_STATUSES == {
            AppointmentStatus.EN_ATTENTE,
            AppointmentStatus.ACCEPTED,
            AppointmentStatus.EN_COURS,
        }

    def test_unique_on_workshop_date_time(self):
        index = _slot_index()
        assert index.unique
        assert [c.name for c in index.columns] == ["workshop_id", "date", "time"]

    def test_predicate_covers_exactly_active_statuses(self):
        ddl = str(CreateIndex(_slot_index()).compile(dialect=postgresql.dialect()))

        assert ddl.startswith(f"CREATE UNIQUE INDEX {SLOT_INDEX} ON appointments")
        _, _, where = ddl.partition(" WHERE ")
        assert where, ddl
        assert "status IN" in where
        assert _quoted_statuses(where) == {s.value for s in ACTIVE_STATUSES}

    def test_released_statuses_not_in_predicate(self):
        ddl = str(CreateIndex(_slot_index()).compile(dialect=postgresql.dialect()))
        released = {AppointmentStatus.REFUSED, AppointmentStatus.FINISH, AppointmentStatus.CANCELLED}
        assert not _quoted_statuses(ddl) & {s.value for s in released}

    def test_migration_predicate_matches_model(self):
        source = MIGRATION.read_text(encoding="utf-8")
        block = source[source.index(f'"{SLOT_INDEX}",'):]
        block = block[: block.index("\n    )")]

        assert "unique=True" in block
        assert '["workshop_id", "date", "time"]' in block
        match = re.search(r'postgresql_where=sa\.text\("([^"]+)"\)', block)
        assert match is not None
        assert _quoted_statuses(match.group(1)) == {s.value for s in ACTIVE_STATUSES}


class TestNotificationTable:
    def test_message_is_unbounded_text(self):
        assert isinstance(Notification.__table__.c.message.type, Text)

    def test_migration_message_is_text(self):
        source = MIGRATION.read_text(encoding="utf-8")
        assert 'sa.Column("message", sa.Text(), nullable=False)' in source
