"""Dose-time calculation.

Turns a patient's wake/sleep window, a dose frequency and free-text instructions into
the wall-clock times at which doses should be taken. Keyword classification is kept
separate from the spacing rules so either can be replaced on its own.
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Iterable

from shared.contracts.enums import InstructionTag

MINUTES_PER_DAY = 24 * 60
ANCHOR_OFFSET_MINUTES = 60
# Twice-daily meal doses: dinner is assumed three hours before sleep.
DINNER_BEFORE_SLEEP_MINUTES = 180
MEAL_OFFSET_MINUTES = 30

INSTRUCTION_KEYWORDS: dict[InstructionTag, tuple[str, ...]] = {
    InstructionTag.BEFORE_BED: ("before bed", "sleep"),
    InstructionTag.BREAKFAST: ("breakfast", "morning"),
    InstructionTag.AFTER_MEAL: ("after meal", "after food"),
    InstructionTag.BEFORE_MEAL: ("before meal", "before food"),
    InstructionTag.DINNER: ("dinner",),
}

SINGLE_DOSE_PRIORITY = (
    InstructionTag.BEFORE_BED,
    InstructionTag.BREAKFAST,
    InstructionTag.AFTER_MEAL,
    InstructionTag.BEFORE_MEAL,
)


def parse_clock(value: str | time) -> time:
    """Accept ``HH:MM`` strings or ``time`` objects."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    return datetime.strptime(value.strip(), "%H:%M").time()


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def classify_instructions(instructions: str | None) -> frozenset[InstructionTag]:
    if not instructions:
        return frozenset({InstructionTag.NONE})

    lower = instructions.lower()
    tags = {
        tag
        for tag, keywords in INSTRUCTION_KEYWORDS.items()
        if any(keyword in lower for keyword in keywords)
    }
    return frozenset(tags or {InstructionTag.NONE})


def primary_tag(tags: Iterable[InstructionTag]) -> InstructionTag:
    present = set(tags)
    for tag in SINGLE_DOSE_PRIORITY:
        if tag in present:
            return tag
    return InstructionTag.NONE


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _to_time(total_minutes: float) -> time:
    wrapped = int(round(total_minutes)) % MINUTES_PER_DAY
    return time(wrapped // 60, wrapped % 60)


def _window(wake: time, sleep: time) -> tuple[int, int]:
    wake_m = _minutes(wake)
    sleep_m = _minutes(sleep)
    if sleep_m <= wake_m:
        sleep_m += MINUTES_PER_DAY
    return wake_m, sleep_m


def _single_dose(wake_m: int, sleep_m: int, tags: frozenset[InstructionTag]) -> list[float]:
    tag = primary_tag(tags)
    if tag == InstructionTag.BEFORE_BED:
        return [sleep_m - ANCHOR_OFFSET_MINUTES]
    if tag in (InstructionTag.AFTER_MEAL, InstructionTag.BEFORE_MEAL):
        return [(wake_m + sleep_m) / 2]
    return [wake_m + ANCHOR_OFFSET_MINUTES]


def _twice_daily(wake_m: int, sleep_m: int, tags: frozenset[InstructionTag]) -> list[float]:
    default = [wake_m + ANCHOR_OFFSET_MINUTES, sleep_m - ANCHOR_OFFSET_MINUTES]
    if InstructionTag.DINNER in tags:
        return default

    breakfast = wake_m + ANCHOR_OFFSET_MINUTES
    dinner = sleep_m - DINNER_BEFORE_SLEEP_MINUTES
    if InstructionTag.AFTER_MEAL in tags:
        return sorted([breakfast + MEAL_OFFSET_MINUTES, dinner + MEAL_OFFSET_MINUTES])
    if InstructionTag.BEFORE_MEAL in tags:
        return sorted([breakfast - MEAL_OFFSET_MINUTES, dinner - MEAL_OFFSET_MINUTES])
    return sorted(default)


def _spread(wake_m: int, sleep_m: int, frequency: int, tags: frozenset[InstructionTag]) -> list[float]:
    with_breakfast = InstructionTag.BREAKFAST in tags
    before_bed = InstructionTag.BEFORE_BED in tags

    start = wake_m + ANCHOR_OFFSET_MINUTES if with_breakfast else wake_m
    end = sleep_m - ANCHOR_OFFSET_MINUTES if before_bed else sleep_m
    if end <= start:
        start, end = wake_m, wake_m + 60 * frequency

    interval = (end - start) / (frequency - 1)
    points = [start + i * interval for i in range(frequency)]

    if with_breakfast:
        points[0] = wake_m + ANCHOR_OFFSET_MINUTES
    if before_bed:
        points[-1] = sleep_m - ANCHOR_OFFSET_MINUTES
    return points


def compute_dose_times(
    wake_time: str | time,
    sleep_time: str | time,
    instructions: str | None,
    frequency: int,
    dosage: int = 1,
) -> list[time]:
    """Return the ordered dose times for one day.

    ``dosage`` is part of the calculator contract but does not influence spacing; it
    only matters for pill-supply accounting in the materializer. Inputs are assumed
    validated by the caller (frequency in 1..10, well-formed clock values).
    """
    wake_m, sleep_m = _window(parse_clock(wake_time), parse_clock(sleep_time))
    tags = classify_instructions(instructions)

    if frequency <= 1:
        points = _single_dose(wake_m, sleep_m, tags)
    elif frequency == 2:
        points = _twice_daily(wake_m, sleep_m, tags)
    else:
        points = _spread(wake_m, sleep_m, frequency, tags)

    return [_to_time(point) for point in points]
