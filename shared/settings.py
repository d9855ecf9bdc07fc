from __future__ import annotations

import logging
import os
from datetime import timedelta

from pydantic import BaseModel, Field, model_validator

from shared.contracts.enums import DebouncePolicy

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class EngineSettings(BaseModel):
    """Tunable parameters for the reminder engine.

    Follow-up thresholds are measured from the notification's original sent-at, not
    from the previous resend.
    """

    database_url: str = "sqlite:///./caretrack.db"
    gateway_url: str = "http://whatsapp_gateway:8002/send"
    tick_seconds: int = Field(default=60, ge=1)
    due_tolerance_minutes: int = Field(default=10, ge=1, le=30)
    min_reminder_gap_minutes: int = Field(default=15, ge=1)
    debounce_policy: DebouncePolicy = DebouncePolicy.PATIENT
    followup_first_minutes: int = Field(default=20, ge=1)
    followup_second_minutes: int = Field(default=30, ge=1)
    followup_final_minutes: int = Field(default=40, ge=1)
    materialize_hour: int = Field(default=1, ge=0, le=23)
    worker_count: int = Field(default=1, ge=1, le=32)
    scheduler_enabled: bool = False
    log_level: str = "INFO"

    @model_validator(mode="after")
    def validate_followup_order(self) -> "EngineSettings":
        if not (self.followup_first_minutes < self.followup_second_minutes < self.followup_final_minutes):
            raise ValueError("follow-up thresholds must be strictly increasing")
        return self

    @property
    def due_tolerance(self) -> timedelta:
        return timedelta(minutes=self.due_tolerance_minutes)

    @property
    def min_reminder_gap(self) -> timedelta:
        return timedelta(minutes=self.min_reminder_gap_minutes)

    @property
    def followup_thresholds(self) -> tuple[timedelta, timedelta, timedelta]:
        return (
            timedelta(minutes=self.followup_first_minutes),
            timedelta(minutes=self.followup_second_minutes),
            timedelta(minutes=self.followup_final_minutes),
        )

    @classmethod
    def from_env(cls) -> "EngineSettings":
        values: dict[str, str] = {}
        for field_name in cls.model_fields:
            raw = os.getenv(field_name.upper())
            if raw is not None:
                values[field_name] = raw
        return cls.model_validate(values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
