"""Patient-scoped transactions.

The patient row is the unit of locking: every job pass for one patient runs inside
``patient_transaction`` which loads the aggregate (``FOR UPDATE`` where the backend
supports it) and bumps ``patients.revision`` conditionally on commit. A concurrent
writer that committed first makes the bump match zero rows and the pass rolls back.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from shared.contracts.enums import NotificationStatus, PatientStatus
from shared.errors import ConcurrentModificationError, PatientNotFound

from .models import Notification, Patient


def load_patient(session: Session, patient_id: int, for_update: bool = False) -> Patient:
    stmt = (
        select(Patient)
        .where(Patient.id == patient_id)
        .options(
            selectinload(Patient.medications),
            selectinload(Patient.schedule_entries),
            selectinload(Patient.notifications),
            selectinload(Patient.caregivers),
        )
    )
    if for_update:
        stmt = stmt.with_for_update(of=Patient)
    patient = session.scalars(stmt).first()
    if patient is None:
        raise PatientNotFound(patient_id)
    return patient


def bump_revision(session: Session, patient: Patient, loaded_revision: int) -> None:
    session.flush()
    result = session.execute(
        update(Patient)
        .where(Patient.id == patient.id, Patient.revision == loaded_revision)
        .values(revision=loaded_revision + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentModificationError(patient.id, loaded_revision)
    set_committed_value(patient, "revision", loaded_revision + 1)


@contextmanager
def patient_transaction(
    session_factory: sessionmaker[Session], patient_id: int
) -> Generator[Patient, None, None]:
    """Yield the locked patient aggregate; commit with a revision check or roll back."""
    session = session_factory()
    try:
        patient = load_patient(session, patient_id, for_update=True)
        loaded_revision = patient.revision
        yield patient
        bump_revision(session, patient, loaded_revision)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def list_patient_ids(
    session: Session,
    statuses: Iterable[PatientStatus] = (PatientStatus.ACTIVE,),
    notifications_enabled: bool | None = True,
) -> list[int]:
    stmt = select(Patient.id).where(Patient.status.in_(list(statuses)))
    if notifications_enabled is not None:
        stmt = stmt.where(Patient.notifications_enabled.is_(notifications_enabled))
    return list(session.scalars(stmt.order_by(Patient.id)))


def list_patient_ids_with_pending_notifications(session: Session) -> list[int]:
    stmt = (
        select(Patient.id)
        .join(Notification, Notification.patient_id == Patient.id)
        .where(
            Patient.status == PatientStatus.ACTIVE,
            Patient.notifications_enabled.is_(True),
            Notification.status == NotificationStatus.PENDING,
        )
        .distinct()
        .order_by(Patient.id)
    )
    return list(session.scalars(stmt))
