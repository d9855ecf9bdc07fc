from __future__ import annotations

import logging
from datetime import datetime

from app.db.models import Notification, Patient, ScheduleEntry
from shared.contracts.enums import NotificationStatus, ResponseAction, ScheduleStatus

logger = logging.getLogger(__name__)


def latest_pending_notification(patient: Patient) -> Notification | None:
    pending = [n for n in patient.notifications if n.status == NotificationStatus.PENDING]
    if not pending:
        return None
    return max(pending, key=lambda n: (n.sent_at, n.id or 0))


def _covered_entries(patient: Patient, notification: Notification) -> list[ScheduleEntry]:
    return [e for e in patient.schedule_entries if e.notification is notification]


def _entry_for(patient: Patient, medication_name: str) -> ScheduleEntry | None:
    pending = sorted(
        (
            e
            for e in patient.schedule_entries
            if e.medication_name == medication_name and e.status == ScheduleStatus.PENDING
        ),
        key=lambda e: e.scheduled_at,
    )
    reminded = [e for e in pending if e.reminder_sent]
    if reminded:
        return reminded[0]
    return pending[0] if pending else None


def resolve_notification(
    patient: Patient, notification: Notification, action: ResponseAction, now: datetime
) -> list[str]:
    """Close a pending notification and settle the entries it covered.

    Entries linked to the notification at dispatch are settled exactly. A notification
    with no linked entries falls back to one pending entry per medication name.
    Returns the medication names whose entries were updated. Medications without a
    pending entry are logged and left alone.
    """
    notification.status = (
        NotificationStatus.TAKEN if action == ResponseAction.TAKEN else NotificationStatus.SKIPPED
    )

    covered = _covered_entries(patient, notification)
    updated: list[str] = []
    for name in notification.medications:
        if covered:
            entries = [e for e in covered if e.medication_name == name and e.status == ScheduleStatus.PENDING]
        else:
            entry = _entry_for(patient, name)
            entries = [entry] if entry is not None else []
        if not entries:
            logger.warning(f"Patient {patient.id}: no pending entry for {name}, notification {notification.id}")
            continue

        medication = patient.medication_named(name)
        for entry in entries:
            if action == ResponseAction.TAKEN:
                entry.status = ScheduleStatus.TAKEN
                entry.taken_at = now
                if medication is not None:
                    medication.pill_count = max(0, medication.pill_count - medication.dosage)
                    medication.pills_consumed += medication.dosage
            else:
                entry.status = ScheduleStatus.SKIPPED
                if medication is not None:
                    medication.skipped_count += 1
        updated.append(name)

    logger.info(f"Patient {patient.id}: notification {notification.id} {action.value} ({', '.join(updated) or 'none'})")
    return updated
