"""Due-dose dispatch for a single patient.

One call handles one patient inside the caller's transaction: select due entries,
apply the debounce policy, send a single grouped reminder and record the outcome.
Entries are only marked reminder-sent after the transport confirms delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from app.db.models import Notification, Patient, ScheduleEntry
from services.whatsapp_gateway.outbound import MessageTransport
from shared.contracts.enums import DebouncePolicy, NotificationStatus, PatientStatus, ScheduleStatus
from shared.settings import EngineSettings

logger = logging.getLogger(__name__)

REPLY_HINT = "Reply D to confirm taken or S to skip."


@dataclass
class DispatchOutcome:
    patient_id: int
    sent: bool = False
    reason: str = ""
    medications: list[str] = field(default_factory=list)
    error: str | None = None


def find_due_entries(patient: Patient, now: datetime, tolerance: timedelta) -> list[ScheduleEntry]:
    enabled = {m.name for m in patient.medications if m.reminders_enabled}
    return [
        entry
        for entry in patient.schedule_entries
        if entry.status == ScheduleStatus.PENDING
        and not entry.reminder_sent
        and entry.medication_name in enabled
        and abs(entry.scheduled_at - now) <= tolerance
    ]


def pending_notification_medications(patient: Patient) -> set[str]:
    names: set[str] = set()
    for notification in patient.notifications:
        if notification.status == NotificationStatus.PENDING:
            names.update(notification.medications)
    return names


def apply_debounce(
    patient: Patient, due: list[ScheduleEntry], now: datetime, settings: EngineSettings
) -> list[ScheduleEntry]:
    if settings.debounce_policy == DebouncePolicy.MEDICATION:
        busy = pending_notification_medications(patient)
        return [entry for entry in due if entry.medication_name not in busy]

    last = patient.last_reminder_sent
    if last is not None and now - last < settings.min_reminder_gap:
        return []
    return due


def group_by_medication(entries: list[ScheduleEntry]) -> dict[str, list[ScheduleEntry]]:
    grouped: dict[str, list[ScheduleEntry]] = {}
    for entry in sorted(entries, key=lambda e: (e.scheduled_at, e.medication_name)):
        grouped.setdefault(entry.medication_name, []).append(entry)
    return grouped


def format_local(instant: datetime, time_zone: str) -> str:
    return instant.astimezone(ZoneInfo(time_zone)).strftime("%I:%M %p")


def render_reminder(patient: Patient, grouped: dict[str, list[ScheduleEntry]]) -> str:
    lines = ["Time for your medication:"]
    for name, entries in grouped.items():
        times = ", ".join(format_local(e.scheduled_at, patient.timezone) for e in entries)
        lines.append(f"- {name} at {times}")
    lines.append("")
    lines.append(REPLY_HINT)
    return "\n".join(lines)


def dispatch_patient(
    patient: Patient, transport: MessageTransport, settings: EngineSettings, now: datetime
) -> DispatchOutcome:
    outcome = DispatchOutcome(patient_id=patient.id)
    if patient.status != PatientStatus.ACTIVE or not patient.notifications_enabled:
        outcome.reason = "inactive"
        return outcome

    due = find_due_entries(patient, now, settings.due_tolerance)
    if not due:
        outcome.reason = "nothing due"
        return outcome

    due = apply_debounce(patient, due, now, settings)
    if not due:
        outcome.reason = "debounced"
        logger.info(f"Patient {patient.id}: reminder debounced ({settings.debounce_policy.value})")
        return outcome

    grouped = group_by_medication(due)
    body = render_reminder(patient, grouped)
    outcome.medications = list(grouped)

    result = transport.send(patient.phone, body)
    if not result.ok:
        outcome.reason = "delivery failed"
        outcome.error = result.error
        patient.notifications.append(
            Notification(
                sent_at=now,
                medications=list(outcome.medications),
                message=body,
                status=NotificationStatus.FAILED,
                resends=0,
                error=result.error,
            )
        )
        logger.warning(f"Patient {patient.id}: reminder delivery failed: {result.error}")
        return outcome

    notification = Notification(
        sent_at=now,
        medications=outcome.medications,
        message=body,
        status=NotificationStatus.PENDING,
        resends=0,
    )
    patient.notifications.append(notification)
    for entry in due:
        entry.reminder_sent = True
        entry.notification = notification
    patient.last_reminder_sent = now
    outcome.sent = True
    outcome.reason = "sent"
    logger.info(f"Patient {patient.id}: reminder sent for {', '.join(outcome.medications)}")
    return outcome
