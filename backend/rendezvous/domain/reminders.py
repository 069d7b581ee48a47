"""Reminder windows and their push texts."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class Anchor(str, Enum):
    START = "start"
    END = "end"


@dataclass(frozen=True)
class ReminderWindow:
    name: str
    anchor: Anchor
    minutes_before: int
    tolerance: int = 1

    def contains(self, minutes_left: float) -> bool:
        return self.minutes_before - self.tolerance <= minutes_left <= self.minutes_before + self.tolerance


REMINDER_WINDOWS: tuple[ReminderWindow, ...] = (
    ReminderWindow("start_15m", Anchor.START, 15),
    ReminderWindow("start_5m", Anchor.START, 5),
    ReminderWindow("start_2m", Anchor.START, 2),
    ReminderWindow("end_5m", Anchor.END, 5),
    ReminderWindow("start_2d", Anchor.START, 2 * 24 * 60),
)


def minutes_until(target: datetime, now: datetime) -> float:
    return (target - now).total_seconds() / 60


def due_windows(start: datetime, duration_minutes: int, now: datetime) -> list[ReminderWindow]:
    """Windows whose inclusive band contains the time left at ``now``."""
    end = start + timedelta(minutes=duration_minutes)
    due = []
    for window in REMINDER_WINDOWS:
        target = start if window.anchor == Anchor.START else end
        if window.contains(minutes_until(target, now)):
            due.append(window)
    return due


def reminder_texts(window: ReminderWindow, local_date: str, time_slot: str) -> tuple[str, str]:
    """(client body, pro body) for a window."""
    if window.name == "start_2d":
        return (
            f"Reminder: your appointment on {local_date} at {time_slot} is in two days.",
            f"Reminder: you have a client appointment on {local_date} at {time_slot} in two days.",
        )
    if window.anchor == Anchor.END:
        body = f"Your appointment ends in about {window.minutes_before} minutes."
        return body, body
    body = f"Your appointment at {time_slot} starts in about {window.minutes_before} minutes."
    return body, body
