class CareTrackError(Exception):
    """Base class for engine errors surfaced to callers."""


class PatientNotFound(CareTrackError, KeyError):
    pass


class MedicationNotFound(CareTrackError, KeyError):
    pass


class ConcurrentModificationError(CareTrackError):
    """Raised when a patient's revision changed between load and commit."""

    def __init__(self, patient_id: int, expected_revision: int) -> None:
        super().__init__(f"patient {patient_id} changed since revision {expected_revision}")
        self.patient_id = patient_id
        self.expected_revision = expected_revision
