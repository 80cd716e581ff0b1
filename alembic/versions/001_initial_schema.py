"""Initial schema — accounts mirror, cars, appointments, notifications, audit.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone", sa.String(20)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_certified", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "workshops",
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("phone", sa.String(20)),
        sa.Column("address", sa.String(500)),
        sa.Column("type", sa.String(20), nullable=False, server_default="mechanic"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_certified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("price_visit_mechanic", sa.Numeric(10, 2)),
        sa.Column("price_visit_paint", sa.Numeric(10, 2)),
        sa.Column("slot_times", postgresql.ARRAY(sa.String(5)), comment="HH:MM labels bookable each day"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("actor_id", sa.String(100), comment="Account ID or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="user, workshop, admin, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Tables with FKs ────────────────────────────────────────────────

    op.create_table(
        "cars",
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("brand", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("year", sa.Integer()),
        sa.Column("vin", sa.String(17), unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="no_proccess"),
        sa.Column("images", postgresql.ARRAY(sa.String(500)), nullable=False, server_default="{}"),
        sa.Column("qr_payload", postgresql.JSONB(astext_type=sa.Text()), comment="QR verification data"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "appointments",
        sa.Column("workshop_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("workshops.id"), nullable=False, index=True),
        sa.Column("car_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cars.id"), nullable=False, index=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("date", sa.Date(), nullable=False, index=True),
        sa.Column("time", sa.String(5), nullable=False, comment="HH:MM slot label"),
        sa.Column("status", sa.String(20), nullable=False, server_default="en_attente", index=True),
        sa.Column("images", postgresql.ARRAY(sa.String(500)), nullable=False, server_default="{}"),
        sa.Column("rapport_pdf", sa.String(500)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    # One active appointment per slot; refused/finish/cancelled release it.
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["workshop_id", "date", "time"],
        unique=True,
        postgresql_where=sa.text("status IN ('accepted', 'en_attente', 'en_cours')"),
    )

    op.create_table(
        "notifications",
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender_id", postgresql.UUID(as_uuid=True)),
        sa.Column(
            "appointment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("appointments.id", ondelete="SET NULL"),
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(30), nullable=False, server_default="other"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_recipient_created", "notifications", ["recipient_id", "created_at"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_index("ix_notifications_recipient_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("cars")
    op.drop_table("audit_log")
    op.drop_table("workshops")
    op.drop_table("users")
