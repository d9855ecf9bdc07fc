"""Resend and escalation stages for unacknowledged reminders.

Each pending notification advances at most one stage per call. Thresholds are measured
from the original ``sent_at``. The resend counter only moves after the transport
confirms delivery; a failed resend closes the notification as failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.db.models import Notification, Patient
from services.scheduler.escalation import CaregiverEscalator
from services.scheduler.responses import resolve_notification
from services.whatsapp_gateway.outbound import MessageTransport
from shared.contracts.enums import NotificationStatus, ResponseAction
from shared.settings import EngineSettings

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


@dataclass
class FollowupOutcome:
    patient_id: int
    resent: int = 0
    failed: int = 0
    escalated: list[list[str]] = field(default_factory=list)


def render_followup(notification: Notification, attempt: int) -> str:
    return (
        f"Reminder again: please take {', '.join(notification.medications)}. "
        f"Reply D to confirm taken or S to skip. (Attempt {attempt}/{MAX_ATTEMPTS})"
    )


def advance_notification(
    patient: Patient,
    notification: Notification,
    transport: MessageTransport,
    escalator: CaregiverEscalator,
    settings: EngineSettings,
    now: datetime,
) -> str | None:
    """Apply the next due stage to one pending notification.

    Returns ``"resent"``, ``"failed"``, ``"escalated"`` or ``None`` when nothing was due.
    """
    if notification.status != NotificationStatus.PENDING:
        return None

    first, second, final = settings.followup_thresholds
    elapsed = now - notification.sent_at
    resends = notification.resends

    if resends >= 2:
        if elapsed < final:
            return None
        resolve_notification(patient, notification, ResponseAction.SKIPPED, now)
        escalator.escalate(patient, list(notification.medications))
        logger.info(f"Patient {patient.id}: notification {notification.id} unanswered, escalated")
        return "escalated"

    threshold = first if resends == 0 else second
    if elapsed < threshold:
        return None

    result = transport.send(patient.phone, render_followup(notification, resends + 2))
    if not result.ok:
        notification.status = NotificationStatus.FAILED
        notification.error = result.error
        logger.warning(f"Patient {patient.id}: resend of notification {notification.id} failed: {result.error}")
        return "failed"

    notification.resends = resends + 1
    return "resent"


def followup_patient(
    patient: Patient,
    transport: MessageTransport,
    escalator: CaregiverEscalator,
    settings: EngineSettings,
    now: datetime,
) -> FollowupOutcome:
    outcome = FollowupOutcome(patient_id=patient.id)
    pending = [n for n in patient.notifications if n.status == NotificationStatus.PENDING]
    for notification in sorted(pending, key=lambda n: n.sent_at):
        stage = advance_notification(patient, notification, transport, escalator, settings, now)
        if stage == "resent":
            outcome.resent += 1
        elif stage == "failed":
            outcome.failed += 1
        elif stage == "escalated":
            outcome.escalated.append(list(notification.medications))
    return outcome
