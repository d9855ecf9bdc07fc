from enum import Enum


class ChannelType(str, Enum):
    SMS = "sms"
    WHATSAPP = "whatsapp"


class PatientStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    INACTIVE = "inactive"


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    TAKEN = "taken"
    SKIPPED = "skipped"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    TAKEN = "taken"
    SKIPPED = "skipped"
    FAILED = "failed"


class ResponseAction(str, Enum):
    TAKEN = "taken"
    SKIPPED = "skipped"


class InstructionTag(str, Enum):
    BEFORE_BED = "before_bed"
    BREAKFAST = "breakfast"
    AFTER_MEAL = "after_meal"
    BEFORE_MEAL = "before_meal"
    DINNER = "dinner"
    NONE = "none"


class DebouncePolicy(str, Enum):
    PATIENT = "patient"
    MEDICATION = "medication"
