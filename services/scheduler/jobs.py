"""Recurring reminder jobs.

Dispatch, follow-up and nightly re-materialization each walk the eligible patients and
process every one of them in its own ``patient_transaction``. A patient that is still
being processed by another job is skipped for the tick rather than waited on.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generator

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import Patient
from app.db.repository import list_patient_ids, list_patient_ids_with_pending_notifications, patient_transaction
from app.db.session import session_scope
from services.scheduler.dispatch import dispatch_patient
from services.scheduler.escalation import CaregiverEscalator
from services.scheduler.followup import followup_patient
from services.scheduler.materializer import normalize_now, rematerialize_patient
from services.whatsapp_gateway.outbound import MessageTransport
from shared.contracts.enums import PatientStatus
from shared.errors import ConcurrentModificationError
from shared.settings import EngineSettings

logger = logging.getLogger(__name__)


class PatientLocks:
    """Process-wide registry of per-patient locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, patient_id: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(patient_id, threading.Lock())

    @contextmanager
    def try_hold(self, patient_id: int) -> Generator[bool, None, None]:
        lock = self._lock_for(patient_id)
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()


@dataclass
class TickSummary:
    job: str
    started_at: datetime
    processed: int = 0
    busy: int = 0
    failed: int = 0
    results: list[Any] = field(default_factory=list)


class ReminderJobs:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        transport: MessageTransport,
        settings: EngineSettings | None = None,
        locks: PatientLocks | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.transport = transport
        self.settings = settings or EngineSettings()
        self.locks = locks or PatientLocks()
        self.escalator = CaregiverEscalator(transport)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.scheduler: BackgroundScheduler | None = None

    def _process_one(self, patient_id: int, work: Callable[[Patient], Any]) -> tuple[str, Any]:
        with self.locks.try_hold(patient_id) as held:
            if not held:
                logger.info(f"Patient {patient_id} busy, skipped this tick")
                return "busy", None
            try:
                with patient_transaction(self.session_factory, patient_id) as patient:
                    return "ok", work(patient)
            except ConcurrentModificationError as exc:
                logger.warning(f"Patient {patient_id} rolled back: {exc}")
                return "failed", None
            except Exception:
                logger.exception(f"Patient {patient_id} failed")
                return "failed", None

    def _run(self, job: str, patient_ids: list[int], work: Callable[[Patient], Any], now: datetime) -> TickSummary:
        summary = TickSummary(job=job, started_at=now)
        if self.settings.worker_count > 1 and len(patient_ids) > 1:
            with ThreadPoolExecutor(max_workers=self.settings.worker_count) as pool:
                outcomes = list(pool.map(lambda pid: self._process_one(pid, work), patient_ids))
        else:
            outcomes = [self._process_one(pid, work) for pid in patient_ids]

        for status, result in outcomes:
            if status == "ok":
                summary.processed += 1
                summary.results.append(result)
            elif status == "busy":
                summary.busy += 1
            else:
                summary.failed += 1

        logger.info(
            f"{job} tick: {summary.processed} processed, {summary.busy} busy, {summary.failed} failed"
        )
        return summary

    def dispatch_tick(self, now: datetime | None = None) -> TickSummary:
        now = normalize_now(now or self.clock())
        with session_scope(self.session_factory) as session:
            patient_ids = list_patient_ids(session)
        return self._run(
            "dispatch",
            patient_ids,
            lambda patient: dispatch_patient(patient, self.transport, self.settings, now),
            now,
        )

    def followup_tick(self, now: datetime | None = None) -> TickSummary:
        now = normalize_now(now or self.clock())
        with session_scope(self.session_factory) as session:
            patient_ids = list_patient_ids_with_pending_notifications(session)
        return self._run(
            "followup",
            patient_ids,
            lambda patient: followup_patient(patient, self.transport, self.escalator, self.settings, now),
            now,
        )

    def materialize_tick(self, now: datetime | None = None) -> TickSummary:
        now = normalize_now(now or self.clock())
        with session_scope(self.session_factory) as session:
            patient_ids = list_patient_ids(session, statuses=(PatientStatus.ACTIVE,), notifications_enabled=None)
        return self._run("materialize", patient_ids, lambda patient: rematerialize_patient(patient, now), now)

    def _job_listener(self, event) -> None:
        if event.exception:
            logger.error(f"Job {event.job_id} failed: {event.exception}")

    def start(self) -> BackgroundScheduler:
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_listener(self._job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        interval = IntervalTrigger(seconds=self.settings.tick_seconds)
        scheduler.add_job(
            self.dispatch_tick, interval, id="dispatch", name="Dispatch due reminders", max_instances=1, coalesce=True
        )
        scheduler.add_job(
            self.followup_tick, interval, id="followup", name="Resend and escalate", max_instances=1, coalesce=True
        )
        scheduler.add_job(
            self.materialize_tick,
            CronTrigger(hour=self.settings.materialize_hour, minute=0, timezone="UTC"),
            id="materialize",
            name="Nightly schedule materialization",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info(f"Reminder jobs started (tick {self.settings.tick_seconds}s)")
        return scheduler

    def shutdown(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
