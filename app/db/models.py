from __future__ import annotations

from datetime import datetime, time, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    TypeDecorator,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from shared.contracts.enums import NotificationStatus, PatientStatus, ScheduleStatus


class Base(DeclarativeBase):
    """Declarative base for application models."""


class UTCDateTime(TypeDecorator):
    """Stores naive UTC and always hands back aware UTC datetimes.

    SQLite drops tzinfo on ``DateTime(timezone=True)``; normalizing here keeps
    comparisons against ``datetime.now(timezone.utc)`` valid on every backend.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Patient(TimestampMixin, Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    wake_time: Mapped[time | None] = mapped_column(Time)
    sleep_time: Mapped[time | None] = mapped_column(Time)

    status: Mapped[PatientStatus] = mapped_column(
        Enum(PatientStatus, name="patient_status", values_callable=_enum_values),
        nullable=False,
        default=PatientStatus.INACTIVE,
    )
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_reminder_sent: Mapped[datetime | None] = mapped_column(UTCDateTime())
    paused_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    medications: Mapped[list[Medication]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", order_by="Medication.id"
    )
    schedule_entries: Mapped[list[ScheduleEntry]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", order_by="ScheduleEntry.scheduled_at"
    )
    notifications: Mapped[list[Notification]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", order_by="Notification.sent_at"
    )
    caregivers: Mapped[list[Caregiver]] = relationship(
        back_populates="patient", cascade="all, delete-orphan", order_by="Caregiver.id"
    )

    def medication_named(self, name: str) -> Medication | None:
        return next((m for m in self.medications if m.name == name), None)


class Medication(TimestampMixin, Base):
    __tablename__ = "medications"
    __table_args__ = (
        UniqueConstraint("patient_id", "name", name="uq_medications_patient_name"),
        CheckConstraint("doses_per_day BETWEEN 1 AND 10", name="ck_medications_doses_per_day"),
        CheckConstraint("dosage >= 1", name="ck_medications_dosage"),
        CheckConstraint("pill_count >= 0", name="ck_medications_pill_count"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Person the prescription is for; one phone can manage several people's medications.
    owner: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    dosage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    doses_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    instructions: Mapped[str] = mapped_column(Text, nullable=False, default="")
    initial_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pill_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reminders_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    custom_times: Mapped[list[str] | None] = mapped_column(JSON)
    pills_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    patient: Mapped[Patient] = relationship(back_populates="medications")


class ScheduleEntry(TimestampMixin, Base):
    __tablename__ = "schedule_entries"
    __table_args__ = (
        UniqueConstraint("medication_id", "scheduled_at", name="uq_schedule_entries_medication_scheduled_at"),
        Index("ix_schedule_entries_patient_status_scheduled_at", "patient_id", "status", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    medication_id: Mapped[int] = mapped_column(ForeignKey("medications.id", ondelete="CASCADE"), nullable=False)
    medication_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        Enum(ScheduleStatus, name="schedule_status", values_callable=_enum_values),
        nullable=False,
        default=ScheduleStatus.PENDING,
    )
    taken_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Reminder that covered this dose; replies settle exactly these entries.
    notification_id: Mapped[int | None] = mapped_column(ForeignKey("notifications.id", ondelete="SET NULL"))

    patient: Mapped[Patient] = relationship(back_populates="schedule_entries")
    medication: Mapped[Medication] = relationship()
    notification: Mapped[Notification | None] = relationship()


class Notification(TimestampMixin, Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_patient_status_sent_at", "patient_id", "status", "sent_at"),
        CheckConstraint("resends BETWEEN 0 AND 2", name="ck_notifications_resends"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    medications: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, name="notification_status", values_callable=_enum_values),
        nullable=False,
        default=NotificationStatus.PENDING,
    )
    resends: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text)

    patient: Mapped[Patient] = relationship(back_populates="notifications")


class Caregiver(TimestampMixin, Base):
    __tablename__ = "caregivers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    persons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    patient: Mapped[Patient] = relationship(back_populates="caregivers")
