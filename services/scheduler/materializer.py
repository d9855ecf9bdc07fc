"""Schedule materialization.

``materialize`` is pure: it expands per-medication dose times into dated entries
bounded by pill supply. ``apply_schedule`` merges such a plan into a patient's
persisted schedule without touching history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from app.db.models import Patient, ScheduleEntry
from services.scheduler.dose_times import compute_dose_times, parse_clock
from shared.contracts.enums import ScheduleStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MedicationPlan:
    name: str
    dose_times: tuple[time, ...]
    dosage: int
    pill_count: int
    doses_per_day: int | None = None

    @property
    def daily_pills(self) -> int:
        return self.dosage * (self.doses_per_day or len(self.dose_times))

    @property
    def total_days(self) -> int:
        if self.daily_pills <= 0:
            return 0
        return self.pill_count // self.daily_pills


@dataclass(frozen=True)
class PlannedEntry:
    medication_name: str
    scheduled_at: datetime
    status: ScheduleStatus = ScheduleStatus.PENDING

    @property
    def key(self) -> tuple[str, datetime]:
        return self.medication_name, self.scheduled_at


@dataclass
class ScheduleDiff:
    added: int = 0
    removed: int = 0
    kept: int = 0
    refill_needed: list[str] = field(default_factory=list)


def normalize_now(now: datetime | None) -> datetime:
    base = now or datetime.now(timezone.utc)
    return base if base.tzinfo else base.replace(tzinfo=timezone.utc)


def _unique_times(times: Iterable[time]) -> list[time]:
    return sorted(set(times), key=lambda t: (t.hour, t.minute))


def _local_instant(day: date, dose_time: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, dose_time, tzinfo=tz).astimezone(timezone.utc)


def _skip_today(today: date, dose_times: list[time], tz: ZoneInfo, now: datetime) -> bool:
    # All-or-nothing: one elapsed dose today pushes the whole medication to tomorrow.
    return any(datetime.combine(today, t, tzinfo=tz) < now for t in dose_times)


def plan_start_day(plan: MedicationPlan, tz: ZoneInfo, now: datetime) -> date:
    """First local day a fresh plan covers."""
    today = now.astimezone(tz).date()
    return today + timedelta(days=1) if _skip_today(today, _unique_times(plan.dose_times), tz, now) else today


def materialize(plans: Iterable[MedicationPlan], time_zone: str, now: datetime | None = None) -> list[PlannedEntry]:
    now = normalize_now(now)
    tz = ZoneInfo(time_zone)

    entries: list[PlannedEntry] = []
    for plan in plans:
        total_days = plan.total_days
        dose_times = _unique_times(plan.dose_times)
        if total_days <= 0 or not dose_times:
            continue

        start = plan_start_day(plan, tz, now)
        for offset in range(total_days):
            day = start + timedelta(days=offset)
            for dose_time in dose_times:
                entries.append(PlannedEntry(plan.name, _local_instant(day, dose_time, tz)))

    entries.sort(key=lambda e: (e.scheduled_at, e.medication_name))
    return entries


def refill_needed(plans: Iterable[MedicationPlan]) -> list[str]:
    return [plan.name for plan in plans if plan.total_days <= 0]


def plans_for_patient(patient: Patient, medication_names: Iterable[str] | None = None) -> list[MedicationPlan]:
    """Build plans for the patient's reminder-enabled medications.

    Custom times override the calculator for their medication. Medications without
    custom times need the patient's wake and sleep times.
    """
    wanted = set(medication_names) if medication_names is not None else None
    plans: list[MedicationPlan] = []
    for medication in patient.medications:
        if not medication.reminders_enabled:
            continue
        if wanted is not None and medication.name not in wanted:
            continue

        if medication.custom_times:
            dose_times = tuple(parse_clock(t) for t in medication.custom_times)
            doses_per_day = len(set(dose_times))
        elif patient.wake_time is not None and patient.sleep_time is not None:
            dose_times = tuple(
                compute_dose_times(
                    patient.wake_time,
                    patient.sleep_time,
                    medication.instructions,
                    medication.doses_per_day,
                    medication.dosage,
                )
            )
            doses_per_day = medication.doses_per_day
        else:
            logger.info(f"Patient {patient.id} has no wake/sleep times; {medication.name} not scheduled")
            continue

        plans.append(
            MedicationPlan(
                name=medication.name,
                dose_times=dose_times,
                dosage=medication.dosage,
                pill_count=medication.pill_count,
                doses_per_day=doses_per_day,
            )
        )
    return plans


def apply_schedule(
    patient: Patient,
    plans: list[MedicationPlan],
    now: datetime | None = None,
    medication_names: Iterable[str] | None = None,
) -> ScheduleDiff:
    """Replace future pending entries of the affected medications with the plan.

    Taken/skipped entries and pending entries already in the past are kept as-is.
    Future pending entries that are still planned are kept too, so reminder-sent
    flags survive a regeneration with unchanged inputs. Only the local days a plan
    covers are replaced: when the plan starts tomorrow, the rest of today stays.
    """
    now = normalize_now(now)
    tz = ZoneInfo(patient.timezone)
    affected = set(medication_names) if medication_names is not None else {p.name for p in plans}
    relevant_plans = [p for p in plans if p.name in affected]
    planned = materialize(relevant_plans, patient.timezone, now)
    planned_keys = {p.key for p in planned}
    start_days = {
        p.name: plan_start_day(p, tz, now) for p in relevant_plans if p.total_days > 0 and p.dose_times
    }

    diff = ScheduleDiff(refill_needed=refill_needed(relevant_plans))
    for entry in list(patient.schedule_entries):
        if entry.medication_name not in affected:
            continue
        if entry.status != ScheduleStatus.PENDING or entry.scheduled_at < now:
            continue
        start_day = start_days.get(entry.medication_name)
        if start_day is not None and entry.scheduled_at.astimezone(tz).date() < start_day:
            diff.kept += 1
        elif (entry.medication_name, entry.scheduled_at) in planned_keys:
            diff.kept += 1
        else:
            patient.schedule_entries.remove(entry)
            diff.removed += 1

    existing_keys = {(e.medication_name, e.scheduled_at) for e in patient.schedule_entries}
    for item in planned:
        if item.key in existing_keys:
            continue
        medication = patient.medication_named(item.medication_name)
        if medication is None:
            continue
        patient.schedule_entries.append(
            ScheduleEntry(
                medication=medication,
                medication_name=item.medication_name,
                scheduled_at=item.scheduled_at,
                status=ScheduleStatus.PENDING,
                reminder_sent=False,
            )
        )
        existing_keys.add(item.key)
        diff.added += 1

    if diff.refill_needed:
        logger.warning(f"Patient {patient.id} needs a refill for: {', '.join(diff.refill_needed)}")
    logger.info(
        f"Schedule for patient {patient.id}: +{diff.added} -{diff.removed} ={diff.kept} "
        f"({', '.join(sorted(affected)) or 'no medications'})"
    )
    return diff


def rematerialize_patient(
    patient: Patient, now: datetime | None = None, medication_names: Iterable[str] | None = None
) -> ScheduleDiff:
    """Regenerate the schedule for some or all of a patient's medications.

    Disabled medications in ``medication_names`` end up with no future pending entries.
    """
    names = set(medication_names) if medication_names is not None else {m.name for m in patient.medications}
    return apply_schedule(patient, plans_for_patient(patient, names), now, names)
