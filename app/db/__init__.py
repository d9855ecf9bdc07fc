from .models import (
    Base,
    Caregiver,
    Medication,
    Notification,
    Patient,
    ScheduleEntry,
)

__all__ = [
    "Base",
    "Caregiver",
    "Medication",
    "Notification",
    "Patient",
    "ScheduleEntry",
]
