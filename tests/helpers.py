from datetime import datetime, timezone
from typing import Any, Dict

UTC = timezone.utc

MEDICATION_DEFAULTS: Dict[str, Any] = {
    "name": "Aspirin",
    "owner": "self",
    "dosage": 1,
    "doses_per_day": 2,
    "instructions": "",
    "initial_count": 20,
    "pill_count": 20,
    "reminders_enabled": True,
    "custom_times": None,
    "pills_consumed": 0,
    "skipped_count": 0,
}

CAREGIVER_DEFAULTS: Dict[str, Any] = {
    "full_name": "Carol Caregiver",
    "phone": "+15550009",
    "persons": ["self"],
    "notifications_enabled": True,
}


def at(day: int, hour: int, minute: int = 0) -> datetime:
    """An instant in March 2026, UTC."""
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)
