from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import ChannelType

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class MessageIn(BaseModel):
    """Inbound patient reply as delivered by the messaging gateway."""

    model_config = ConfigDict(extra="forbid")

    message_id: str
    phone: str = Field(min_length=4)
    text: str
    channel: ChannelType = ChannelType.SMS
    received_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class MessageOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str = Field(min_length=1)
    body: str = Field(min_length=1)
    channel: ChannelType = ChannelType.SMS
    correlation_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class ReplyRequest(BaseModel):
    text: str = Field(min_length=1)


class WakeSleepRequest(BaseModel):
    wake_time: str = Field(pattern=CLOCK_PATTERN)
    sleep_time: str = Field(pattern=CLOCK_PATTERN)

    @model_validator(mode="after")
    def validate_window(self) -> "WakeSleepRequest":
        if self.wake_time == self.sleep_time:
            raise ValueError("wake_time and sleep_time must differ")
        return self


class CustomTimesRequest(BaseModel):
    times: list[str] = Field(min_length=1, max_length=10)

    @field_validator("times")
    @classmethod
    def validate_times(cls, value: list[str]) -> list[str]:
        invalid = [t for t in value if not re.match(CLOCK_PATTERN, t)]
        if invalid:
            raise ValueError(f"invalid HH:MM times: {', '.join(invalid)}")
        return sorted(set(value))


class EnableRemindersRequest(BaseModel):
    enabled: bool = True
