from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Patient
from app.db.repository import patient_transaction
from app.db.session import session_scope
from services.scheduler.dose_times import format_clock, parse_clock
from services.scheduler.materializer import ScheduleDiff, apply_schedule, rematerialize_patient
from services.scheduler.responses import latest_pending_notification, resolve_notification
from shared.contracts.enums import PatientStatus, ResponseAction
from shared.errors import MedicationNotFound, PatientNotFound

logger = logging.getLogger(__name__)


class InboundParser:
    """Normalize inbound patient replies to response actions."""

    _map: Dict[str, ResponseAction] = {
        "d": ResponseAction.TAKEN,
        "taken": ResponseAction.TAKEN,
        "1": ResponseAction.TAKEN,
        "✅": ResponseAction.TAKEN,
        "s": ResponseAction.SKIPPED,
        "skip": ResponseAction.SKIPPED,
        "skipped": ResponseAction.SKIPPED,
        "3": ResponseAction.SKIPPED,
        "❌": ResponseAction.SKIPPED,
    }

    def normalize(self, reply: Optional[str]) -> Optional[ResponseAction]:
        if reply is None:
            return None
        return self._map.get(reply.strip().lower())


@dataclass
class ResponseOutcome:
    patient_id: int
    action: ResponseAction
    handled: bool
    notification_id: Optional[int] = None
    medications: List[str] = field(default_factory=list)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


class CareTrackFlow:
    """Conversation-layer entry points into the reminder engine.

    Every call runs in one patient transaction and re-materializes whatever part of the
    schedule its change affects.
    """

    def __init__(self, session_factory: sessionmaker[Session], parser: Optional[InboundParser] = None):
        self.session_factory = session_factory
        self.parser = parser or InboundParser()

    def patient_id_for_phone(self, phone: str) -> int:
        with session_scope(self.session_factory) as session:
            patient_id = session.scalars(select(Patient.id).where(Patient.phone == phone)).first()
        if patient_id is None:
            raise PatientNotFound(phone)
        return patient_id

    def record_response(
        self, patient_id: int, action: ResponseAction, now: Optional[datetime] = None
    ) -> ResponseOutcome:
        now = _now(now)
        with patient_transaction(self.session_factory, patient_id) as patient:
            notification = latest_pending_notification(patient)
            if notification is None:
                logger.info(f"Patient {patient_id}: {action.value} reply with no pending reminder")
                return ResponseOutcome(patient_id, action, handled=False)
            medications = resolve_notification(patient, notification, action, now)
            return ResponseOutcome(patient_id, action, True, notification.id, medications)

    def handle_reply(self, patient_id: int, reply: str, now: Optional[datetime] = None) -> Optional[ResponseOutcome]:
        action = self.parser.normalize(reply)
        if action is None:
            return None
        return self.record_response(patient_id, action, now)

    def enable_reminders(
        self, patient_id: int, medication_name: str, enabled: bool = True, now: Optional[datetime] = None
    ) -> ScheduleDiff:
        with patient_transaction(self.session_factory, patient_id) as patient:
            medication = patient.medication_named(medication_name)
            if medication is None:
                raise MedicationNotFound(medication_name)
            medication.reminders_enabled = enabled
            return rematerialize_patient(patient, _now(now), [medication_name])

    def set_wake_sleep_times(
        self, patient_id: int, wake_time: str, sleep_time: str, now: Optional[datetime] = None
    ) -> ScheduleDiff:
        wake, sleep = parse_clock(wake_time), parse_clock(sleep_time)
        with patient_transaction(self.session_factory, patient_id) as patient:
            patient.wake_time = wake
            patient.sleep_time = sleep
            return rematerialize_patient(patient, _now(now))

    def set_custom_times(
        self, patient_id: int, medication_name: str, times: List[str], now: Optional[datetime] = None
    ) -> ScheduleDiff:
        normalized = sorted({format_clock(parse_clock(t)) for t in times})
        with patient_transaction(self.session_factory, patient_id) as patient:
            medication = patient.medication_named(medication_name)
            if medication is None:
                raise MedicationNotFound(medication_name)
            medication.custom_times = normalized or None
            return rematerialize_patient(patient, _now(now), [medication_name])

    def activate(self, patient_id: int, now: Optional[datetime] = None) -> ScheduleDiff:
        with patient_transaction(self.session_factory, patient_id) as patient:
            patient.status = PatientStatus.ACTIVE
            patient.notifications_enabled = True
            patient.paused_at = None
            for medication in patient.medications:
                if medication.pill_count == 0 and medication.initial_count > 0:
                    medication.pill_count = medication.initial_count
            return rematerialize_patient(patient, _now(now))

    def pause(self, patient_id: int, now: Optional[datetime] = None) -> ScheduleDiff:
        now = _now(now)
        with patient_transaction(self.session_factory, patient_id) as patient:
            patient.status = PatientStatus.PAUSED
            patient.notifications_enabled = False
            patient.paused_at = now
            # An empty plan drops every future pending entry and keeps history.
            return apply_schedule(patient, [], now, [m.name for m in patient.medications])

    def resume(self, patient_id: int, now: Optional[datetime] = None) -> ScheduleDiff:
        with patient_transaction(self.session_factory, patient_id) as patient:
            patient.status = PatientStatus.ACTIVE
            patient.notifications_enabled = True
            patient.paused_at = None
            return rematerialize_patient(patient, _now(now))
