"""
Shared fixtures: an in-memory SQLite database, a recording transport and helpers to
seed patients with medications and caregivers.
"""

from datetime import time
from typing import Any, Dict, List, Optional

import pytest

from app.db.models import Caregiver, Medication, Patient
from app.db.repository import load_patient
from app.db.session import create_db_engine, create_session_factory, init_db, session_scope
from caretrack import CareTrackFlow
from services.scheduler.jobs import ReminderJobs
from services.whatsapp_gateway.outbound import RecordingTransport
from shared.contracts.enums import PatientStatus
from shared.settings import EngineSettings

from tests.helpers import CAREGIVER_DEFAULTS, MEDICATION_DEFAULTS


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture()
def jobs(session_factory, transport, settings) -> ReminderJobs:
    return ReminderJobs(session_factory, transport, settings)


@pytest.fixture()
def flow(session_factory) -> CareTrackFlow:
    return CareTrackFlow(session_factory)


@pytest.fixture()
def create_patient(session_factory):
    """Insert a patient and return its id.

    Patients default to active with notifications on, waking at 07:00 and sleeping at
    22:00 in UTC, with no medications.
    """

    counter = {"n": 0}

    def _create(
        medications: Optional[List[Dict[str, Any]]] = None,
        caregivers: Optional[List[Dict[str, Any]]] = None,
        **overrides: Any,
    ) -> int:
        counter["n"] += 1
        fields: Dict[str, Any] = {
            "full_name": f"Patient {counter['n']}",
            "phone": f"+1555000{counter['n']:04d}",
            "timezone": "UTC",
            "wake_time": time(7, 0),
            "sleep_time": time(22, 0),
            "status": PatientStatus.ACTIVE,
            "notifications_enabled": True,
            "revision": 0,
        }
        fields.update(overrides)
        patient = Patient(**fields)
        for values in medications or []:
            patient.medications.append(Medication(**{**MEDICATION_DEFAULTS, **values}))
        for values in caregivers or []:
            patient.caregivers.append(Caregiver(**{**CAREGIVER_DEFAULTS, **values}))

        with session_scope(session_factory) as session:
            session.add(patient)
            session.flush()
            return patient.id

    return _create


@pytest.fixture()
def load(session_factory):
    """Return a detached, fully loaded snapshot of a patient."""

    def _load(patient_id: int) -> Patient:
        with session_scope(session_factory) as session:
            return load_patient(session, patient_id)

    return _load
