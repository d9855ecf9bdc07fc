"""create reminder engine tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


patient_status = sa.Enum("active", "paused", "inactive", name="patient_status")
schedule_status = sa.Enum("pending", "taken", "skipped", name="schedule_status")
notification_status = sa.Enum("pending", "taken", "skipped", "failed", name="notification_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("wake_time", sa.Time(), nullable=True),
        sa.Column("sleep_time", sa.Time(), nullable=True),
        sa.Column("status", patient_status, nullable=False, server_default="inactive"),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_reminder_sent", sa.DateTime(), nullable=True),
        sa.Column("paused_at", sa.DateTime(), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_phone", "patients", ["phone"], unique=True)

    op.create_table(
        "medications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("owner", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("dosage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("doses_per_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("instructions", sa.Text(), nullable=False, server_default=""),
        sa.Column("initial_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pill_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reminders_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("custom_times", sa.JSON(), nullable=True),
        sa.Column("pills_consumed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("doses_per_day BETWEEN 1 AND 10", name="ck_medications_doses_per_day"),
        sa.CheckConstraint("dosage >= 1", name="ck_medications_dosage"),
        sa.CheckConstraint("pill_count >= 0", name="ck_medications_pill_count"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("patient_id", "name", name="uq_medications_patient_name"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.Column("medications", sa.JSON(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", notification_status, nullable=False, server_default="pending"),
        sa.Column("resends", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("resends BETWEEN 0 AND 2", name="ck_notifications_resends"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notifications_patient_status_sent_at",
        "notifications",
        ["patient_id", "status", "sent_at"],
    )

    op.create_table(
        "schedule_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("medication_id", sa.Integer(), nullable=False),
        sa.Column("medication_name", sa.String(length=255), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("status", schedule_status, nullable=False, server_default="pending"),
        sa.Column("taken_at", sa.DateTime(), nullable=True),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notification_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["medication_id"], ["medications.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["notification_id"], ["notifications.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("medication_id", "scheduled_at", name="uq_schedule_entries_medication_scheduled_at"),
    )
    op.create_index(
        "ix_schedule_entries_patient_status_scheduled_at",
        "schedule_entries",
        ["patient_id", "status", "scheduled_at"],
    )

    op.create_table(
        "caregivers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("persons", sa.JSON(), nullable=False),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("caregivers")
    op.drop_index("ix_schedule_entries_patient_status_scheduled_at", table_name="schedule_entries")
    op.drop_table("schedule_entries")
    op.drop_index("ix_notifications_patient_status_sent_at", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("medications")
    op.drop_index("ix_patients_phone", table_name="patients")
    op.drop_table("patients")
    notification_status.drop(op.get_bind(), checkfirst=True)
    schedule_status.drop(op.get_bind(), checkfirst=True)
    patient_status.drop(op.get_bind(), checkfirst=True)
