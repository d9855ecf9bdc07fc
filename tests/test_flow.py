from datetime import time

import pytest

from app.db.models import Notification
from app.db.repository import patient_transaction
from caretrack import InboundParser
from shared.contracts.enums import NotificationStatus, PatientStatus, ResponseAction, ScheduleStatus
from shared.errors import MedicationNotFound, PatientNotFound

from tests.helpers import at


def test_parser_normalization_is_deterministic():
    parser = InboundParser()
    assert parser.normalize("D") == ResponseAction.TAKEN
    assert parser.normalize(" d ") == ResponseAction.TAKEN
    assert parser.normalize("Taken") == ResponseAction.TAKEN
    assert parser.normalize("1") == ResponseAction.TAKEN
    assert parser.normalize("✅") == ResponseAction.TAKEN
    assert parser.normalize("S") == ResponseAction.SKIPPED
    assert parser.normalize("skip") == ResponseAction.SKIPPED
    assert parser.normalize("3") == ResponseAction.SKIPPED
    assert parser.normalize("❌") == ResponseAction.SKIPPED
    assert parser.normalize("maybe later") is None
    assert parser.normalize(None) is None


def test_taken_reply_settles_the_reminded_dose(create_patient, flow, jobs, load):
    patient_id = create_patient(medications=[{"name": "Aspirin", "dosage": 2, "pill_count": 20}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8))

    outcome = flow.handle_reply(patient_id, "D", now=at(1, 8, 10))

    assert outcome.handled is True
    assert outcome.medications == ["Aspirin"]
    patient = load(patient_id)
    entry = patient.schedule_entries[0]
    assert entry.status == ScheduleStatus.TAKEN
    assert entry.taken_at == at(1, 8, 10)
    medication = patient.medication_named("Aspirin")
    assert medication.pill_count == 18
    assert medication.pills_consumed == 2
    assert patient.notifications[0].status == NotificationStatus.TAKEN


def test_skipped_reply_counts_the_skip(create_patient, flow, jobs, load):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8))

    flow.handle_reply(patient_id, "s", now=at(1, 8, 10))

    patient = load(patient_id)
    assert patient.schedule_entries[0].status == ScheduleStatus.SKIPPED
    assert patient.medication_named("Aspirin").skipped_count == 1
    assert patient.medication_named("Aspirin").pill_count == 20
    assert patient.notifications[0].status == NotificationStatus.SKIPPED


def test_pill_count_never_goes_negative(create_patient, flow, jobs, session_factory, load):
    patient_id = create_patient(medications=[{"name": "Aspirin", "dosage": 3, "pill_count": 6}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8))
    with patient_transaction(session_factory, patient_id) as patient:
        patient.medication_named("Aspirin").pill_count = 1

    flow.record_response(patient_id, ResponseAction.TAKEN, now=at(1, 8, 5))

    assert load(patient_id).medication_named("Aspirin").pill_count == 0


def test_reply_without_pending_reminder_is_not_handled(create_patient, flow):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])

    outcome = flow.record_response(patient_id, ResponseAction.TAKEN, now=at(1, 9))

    assert outcome.handled is False
    assert flow.handle_reply(patient_id, "hello") is None


def test_unknown_medication_in_notification_is_skipped(create_patient, flow, jobs, session_factory, load):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8))
    with patient_transaction(session_factory, patient_id) as patient:
        patient.notifications.append(
            Notification(
                sent_at=at(1, 8, 1),
                medications=["Ghost", "Aspirin"],
                message="",
                status=NotificationStatus.PENDING,
                resends=0,
            )
        )

    outcome = flow.record_response(patient_id, ResponseAction.TAKEN, now=at(1, 8, 5))

    assert outcome.medications == ["Aspirin"]
    statuses = {n.medications[0]: n.status for n in load(patient_id).notifications}
    assert statuses["Ghost"] == NotificationStatus.TAKEN
    assert statuses["Aspirin"] == NotificationStatus.PENDING


def test_phone_lookup(create_patient, flow, load):
    patient_id = create_patient()
    assert flow.patient_id_for_phone(load(patient_id).phone) == patient_id
    with pytest.raises(PatientNotFound):
        flow.patient_id_for_phone("+10000000000")


def test_enable_and_disable_reminders(create_patient, flow, load):
    patient_id = create_patient(medications=[{"name": "Aspirin", "reminders_enabled": False}])
    flow.activate(patient_id, now=at(1, 6))
    assert load(patient_id).schedule_entries == []

    diff = flow.enable_reminders(patient_id, "Aspirin", now=at(1, 6))
    assert diff.added == 20

    flow.enable_reminders(patient_id, "Aspirin", enabled=False, now=at(1, 6))
    assert load(patient_id).schedule_entries == []

    with pytest.raises(MedicationNotFound):
        flow.enable_reminders(patient_id, "Nope")


def test_wake_sleep_change_moves_pending_doses(create_patient, flow, load):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(patient_id, now=at(1, 6))

    flow.set_wake_sleep_times(patient_id, "05:00", "23:00", now=at(1, 4))

    patient = load(patient_id)
    assert patient.wake_time == time(5, 0)
    assert {e.scheduled_at.time() for e in patient.schedule_entries} == {time(6, 0), time(22, 0)}

    with pytest.raises(ValueError):
        flow.set_wake_sleep_times(patient_id, "5am", "23:00")


def test_custom_times_override_only_that_medication(create_patient, flow, load):
    patient_id = create_patient(medications=[{"name": "Aspirin"}, {"name": "Metformin"}])
    flow.activate(patient_id, now=at(1, 6))

    flow.set_custom_times(patient_id, "Metformin", ["13:00", "09:15", "13:00"], now=at(1, 6))

    patient = load(patient_id)
    assert patient.medication_named("Metformin").custom_times == ["09:15", "13:00"]

    def times(name):
        return {e.scheduled_at.time() for e in patient.schedule_entries if e.medication_name == name}

    assert times("Metformin") == {time(9, 15), time(13, 0)}
    assert times("Aspirin") == {time(8, 0), time(21, 0)}


def test_activation_refills_empty_supply(create_patient, flow, load):
    patient_id = create_patient(
        medications=[{"name": "Aspirin", "pill_count": 0, "initial_count": 10}],
        status=PatientStatus.INACTIVE,
        notifications_enabled=False,
    )

    flow.activate(patient_id, now=at(1, 6))

    patient = load(patient_id)
    assert patient.status == PatientStatus.ACTIVE
    assert patient.notifications_enabled is True
    assert patient.medication_named("Aspirin").pill_count == 10
    assert len(patient.schedule_entries) == 10


def test_pause_clears_future_doses_and_resume_restores_them(create_patient, flow, jobs, load):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8))
    flow.handle_reply(patient_id, "D", now=at(1, 8, 5))

    flow.pause(patient_id, now=at(1, 9))
    patient = load(patient_id)
    assert patient.status == PatientStatus.PAUSED
    assert patient.paused_at == at(1, 9)
    assert [e.status for e in patient.schedule_entries] == [ScheduleStatus.TAKEN]

    flow.resume(patient_id, now=at(2, 6))
    patient = load(patient_id)
    assert patient.status == PatientStatus.ACTIVE
    assert patient.paused_at is None
    pending = [e for e in patient.schedule_entries if e.status == ScheduleStatus.PENDING]
    # 19 pills left after the taken dose: nine full days from day two.
    assert len(pending) == 18
    assert pending[0].scheduled_at == at(2, 8)


def test_reply_settles_the_dose_its_reminder_covered(create_patient, flow, jobs, transport, load):
    patient_id = create_patient(medications=[{"name": "Aspirin"}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8))
    transport.fail_all = True
    jobs.followup_tick(now=at(1, 8, 25))
    transport.fail_all = False
    jobs.dispatch_tick(now=at(1, 21))

    outcome = flow.handle_reply(patient_id, "D", now=at(1, 21, 5))

    assert outcome.medications == ["Aspirin"]
    patient = load(patient_id)
    statuses = {e.scheduled_at: e.status for e in patient.schedule_entries if e.scheduled_at.day == 1}
    assert statuses == {at(1, 8): ScheduleStatus.PENDING, at(1, 21): ScheduleStatus.TAKEN}
    assert patient.medication_named("Aspirin").pill_count == 19


def test_reply_settles_every_dose_grouped_into_one_reminder(create_patient, flow, jobs, transport, load):
    patient_id = create_patient(medications=[{"name": "Aspirin", "custom_times": ["08:00", "08:05"]}])
    flow.activate(patient_id, now=at(1, 6))
    jobs.dispatch_tick(now=at(1, 8, 2))
    assert len(transport.sent) == 1

    flow.handle_reply(patient_id, "D", now=at(1, 8, 10))

    patient = load(patient_id)
    taken = [e.scheduled_at for e in patient.schedule_entries if e.status == ScheduleStatus.TAKEN]
    assert taken == [at(1, 8), at(1, 8, 5)]
    medication = patient.medication_named("Aspirin")
    assert medication.pill_count == 18
    assert medication.pills_consumed == 2
