"""Daily streak and streak-freeze transitions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime

from .models import Program


@dataclass(frozen=True)
class StreakState:
    """Streak counters carried between sessions."""

    streak: int
    best_streak: int
    streak_freezes: int
    last_active_date: str | None


@dataclass(frozen=True)
class StreakUpdate:
    """Next streak state plus whether a freeze was consumed."""

    state: StreakState
    freeze_used: bool


def to_date(value: date | str) -> date:
    """Return calendar date for a date, datetime, or ISO date string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def days_between(earlier: date | str, later: date | str) -> int:
    """Return whole calendar days from earlier to later."""
    return (to_date(later) - to_date(earlier)).days


def update_streak(state: StreakState, today: date | str) -> StreakUpdate:
    """Advance streak state for a session opened on ``today``.

    Cases in priority order:
    - first ever activation starts the streak at 1.
    - same day is a no-op.
    - a one-day gap extends the streak.
    - a two-day gap extends the streak by consuming one freeze, if any.
    - anything else resets the streak to 1.
    """
    today_date = to_date(today)
    today_text = today_date.isoformat()
    last = state.last_active_date

    if last is None:
        return StreakUpdate(
            state=replace(state, streak=1, best_streak=max(state.best_streak, 1), last_active_date=today_text),
            freeze_used=False,
        )

    gap = days_between(last, today_date)
    if gap == 0:
        return StreakUpdate(state=replace(state, last_active_date=today_text), freeze_used=False)

    if gap == 1:
        streak = state.streak + 1
        return StreakUpdate(
            state=replace(
                state, streak=streak, best_streak=max(state.best_streak, streak), last_active_date=today_text
            ),
            freeze_used=False,
        )

    if gap == 2 and state.streak_freezes > 0:
        streak = state.streak + 1
        return StreakUpdate(
            state=StreakState(
                streak=streak,
                best_streak=max(state.best_streak, streak),
                streak_freezes=state.streak_freezes - 1,
                last_active_date=today_text,
            ),
            freeze_used=True,
        )

    # Freezes never cover more than one missed day.
    return StreakUpdate(state=replace(state, streak=1, last_active_date=today_text), freeze_used=False)


def streak_state_of(program: Program) -> StreakState:
    """Return streak counters of a program."""
    return StreakState(
        streak=program.streak,
        best_streak=program.best_streak,
        streak_freezes=program.streak_freezes,
        last_active_date=program.last_active_date,
    )


def apply_streak(program: Program, today: date | str) -> bool:
    """Advance program streak in place and return whether a freeze was used."""
    update = update_streak(streak_state_of(program), today)
    program.streak = update.state.streak
    program.best_streak = update.state.best_streak
    program.streak_freezes = update.state.streak_freezes
    program.last_active_date = update.state.last_active_date
    return update.freeze_used
