from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from app.db.models import Caregiver, Patient
from services.whatsapp_gateway.outbound import MessageTransport

logger = logging.getLogger(__name__)


@dataclass
class EscalationResult:
    caregiver_id: int
    medications: list[str]
    delivered: bool
    error: str | None = None


def render_escalation(patient: Patient, caregiver: Caregiver, medications: list[str]) -> str:
    who = patient.full_name or patient.phone
    return (
        f"Hello {caregiver.full_name}, {who} has not confirmed these medications: "
        f"{', '.join(medications)}. Please check in with them."
    )


class CaregiverEscalator:
    """Notifies enabled caregivers about skipped medications of the persons they look after."""

    def __init__(self, transport: MessageTransport) -> None:
        self.transport = transport

    def medications_for(self, patient: Patient, caregiver: Caregiver, skipped: Iterable[str]) -> list[str]:
        persons = set(caregiver.persons or [])
        selected: list[str] = []
        for name in skipped:
            medication = patient.medication_named(name)
            if medication is not None and medication.owner in persons and name not in selected:
                selected.append(name)
        return selected

    def escalate(self, patient: Patient, skipped_medications: Iterable[str]) -> list[EscalationResult]:
        skipped = list(skipped_medications)
        results: list[EscalationResult] = []
        for caregiver in patient.caregivers:
            if not caregiver.notifications_enabled:
                continue
            medications = self.medications_for(patient, caregiver, skipped)
            if not medications:
                continue

            try:
                delivery = self.transport.send(caregiver.phone, render_escalation(patient, caregiver, medications))
            except Exception as exc:
                logger.exception(f"Escalation to caregiver {caregiver.id} raised")
                results.append(EscalationResult(caregiver.id, medications, False, str(exc)))
                continue

            if not delivery.ok:
                logger.error(f"Escalation to caregiver {caregiver.id} failed: {delivery.error}")
            results.append(EscalationResult(caregiver.id, medications, delivery.ok, delivery.error))

        logger.info(f"Patient {patient.id}: escalated to {sum(r.delivered for r in results)} caregiver(s)")
        return results
