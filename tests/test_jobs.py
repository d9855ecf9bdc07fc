from datetime import datetime, time, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.orm import object_session

from app.db.models import Patient
from app.db.repository import patient_transaction
from services.scheduler.jobs import PatientLocks, ReminderJobs
from services.whatsapp_gateway.outbound import RecordingTransport
from shared.contracts.enums import PatientStatus, ScheduleStatus
from shared.errors import ConcurrentModificationError, PatientNotFound

from tests.helpers import at


def test_patient_lock_is_not_reentrant_across_holders():
    locks = PatientLocks()
    with locks.try_hold(1) as first:
        assert first is True
        with locks.try_hold(1) as second:
            assert second is False
        with locks.try_hold(2) as other:
            assert other is True
    with locks.try_hold(1) as again:
        assert again is True


def test_busy_patient_is_skipped_for_the_tick(create_patient, flow, jobs, transport):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(patient_id, now=at(1, 6))

    with jobs.locks.try_hold(patient_id):
        summary = jobs.dispatch_tick(now=at(1, 8))

    assert summary.busy == 1
    assert summary.processed == 0
    assert transport.sent == []

    jobs.dispatch_tick(now=at(1, 8, 1))
    assert len(transport.sent) == 1


class BrokenForOneAddress(RecordingTransport):
    def __init__(self, broken: str):
        super().__init__()
        self.broken = broken

    def send(self, address, body):
        if address == self.broken:
            raise RuntimeError("transport crashed")
        return super().send(address, body)


def test_one_failing_patient_does_not_stop_the_tick(create_patient, flow, session_factory, settings, load):
    broken_id = create_patient(medications=[{"name": "Aspirin"}])
    healthy_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(broken_id, now=at(1, 6))
    flow.activate(healthy_id, now=at(1, 6))

    transport = BrokenForOneAddress(load(broken_id).phone)
    jobs = ReminderJobs(session_factory, transport, settings)
    summary = jobs.dispatch_tick(now=at(1, 8))

    assert summary.failed == 1
    assert summary.processed == 1
    assert [m.to for m in transport.sent] == [load(healthy_id).phone]
    assert load(broken_id).notifications == []
    assert load(healthy_id).notifications[0].medications == ["Aspirin"]


def test_revision_advances_once_per_committed_transaction(create_patient, session_factory, load):
    patient_id = create_patient()

    with patient_transaction(session_factory, patient_id):
        pass
    with patient_transaction(session_factory, patient_id):
        pass

    assert load(patient_id).revision == 2


def test_concurrent_writer_rolls_back_the_pass(create_patient, session_factory, load):
    patient_id = create_patient()

    with pytest.raises(ConcurrentModificationError):
        with patient_transaction(session_factory, patient_id) as patient:
            patient.full_name = "Changed"
            object_session(patient).execute(
                update(Patient).where(Patient.id == patient_id).values(revision=Patient.revision + 1)
            )

    patient = load(patient_id)
    assert patient.revision == 0
    assert patient.full_name != "Changed"


def test_missing_patient_raises(session_factory):
    with pytest.raises(PatientNotFound):
        with patient_transaction(session_factory, 999):
            pass


def test_materialize_tick_covers_active_patients_only(create_patient, jobs, load):
    active_id = create_patient(medications=[{"name": "Aspirin"}])
    create_patient(medications=[{"name": "Aspirin"}], status=PatientStatus.PAUSED, notifications_enabled=False)

    summary = jobs.materialize_tick(now=at(1, 1))

    assert summary.processed == 1
    assert len(load(active_id).schedule_entries) == 20


def test_nightly_materialize_keeps_tonights_dose_in_patient_zone(create_patient, flow, jobs, load):
    patient_id = create_patient(
        medications=[{"name": "Aspirin"}],
        timezone="Asia/Kolkata",
        wake_time=time(5, 0),
        sleep_time=time(22, 0),
    )
    # 05:30 IST: doses at 06:00 and 21:00 IST start today.
    flow.activate(patient_id, now=datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc))
    tonight = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)

    # 06:30 IST: the morning dose has passed, so a fresh plan would start tomorrow.
    summary = jobs.materialize_tick(now=datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc))

    assert summary.results[0].removed == 0
    entries = load(patient_id).schedule_entries
    tonight_entries = [e for e in entries if e.scheduled_at == tonight]
    assert len(tonight_entries) == 1
    assert tonight_entries[0].status == ScheduleStatus.PENDING
    assert len({e.scheduled_at for e in entries}) == len(entries)
