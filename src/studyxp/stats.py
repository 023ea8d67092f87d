"""Lifetime statistics derived from program state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from .models import Program
from .streak import to_date
from .xp import is_lecture_core_complete


@dataclass(frozen=True)
class LifetimeStats:
    """Derived counters for the stats panel."""

    total_xp: int
    level: int
    streak: int
    best_streak: int
    streak_freezes: int
    total_weeks: int
    weeks_completed: int
    total_lectures: int
    completed_lectures: int
    total_revisions: int
    activity_done: int
    activity_total: int
    practice_done: int
    practice_total: int
    graded_done: int
    graded_total: int
    xp_this_month: int
    active_days: int


def compute_lifetime_stats(program: Program, today: date | str) -> LifetimeStats:
    """Walk the program once and return lifetime counters."""
    total_lectures = 0
    completed_lectures = 0
    total_revisions = 0
    activity_done = 0
    activity_total = 0
    practice_done = 0
    practice_total = 0
    graded_done = 0
    graded_total = 0
    weeks_completed = 0

    for week in program.weeks:
        if week.week_completed:
            weeks_completed += 1
        for lecture in week.lectures:
            total_lectures += 1
            if is_lecture_core_complete(lecture):
                completed_lectures += 1
            total_revisions += lecture.revision_count
            activity_total += lecture.activity_total
            activity_done += min(lecture.activity_done, lecture.activity_total)
        practice_total += week.practice_assignment.total_questions
        practice_done += min(week.practice_assignment.done_questions, week.practice_assignment.total_questions)
        graded_total += week.graded_assignment.total_questions
        graded_done += min(week.graded_assignment.done_questions, week.graded_assignment.total_questions)

    month_prefix = to_date(today).isoformat()[:7]
    xp_this_month = sum(value for key, value in program.xp_history.items() if key.startswith(month_prefix))
    active_days = len([value for value in program.xp_history.values() if value > 0])

    return LifetimeStats(
        total_xp=program.total_xp,
        level=program.level,
        streak=program.streak,
        best_streak=program.best_streak,
        streak_freezes=program.streak_freezes,
        total_weeks=len(program.weeks),
        weeks_completed=weeks_completed,
        total_lectures=total_lectures,
        completed_lectures=completed_lectures,
        total_revisions=total_revisions,
        activity_done=activity_done,
        activity_total=activity_total,
        practice_done=practice_done,
        practice_total=practice_total,
        graded_done=graded_done,
        graded_total=graded_total,
        xp_this_month=xp_this_month,
        active_days=active_days,
    )


def xp_history_window(history: dict[str, int], today: date | str, days: int = 30) -> list[tuple[str, int]]:
    """Return the last ``days`` calendar days of XP, oldest first."""
    end = to_date(today)
    window: list[tuple[str, int]] = []
    for offset in range(days - 1, -1, -1):
        key = (end - timedelta(days=offset)).isoformat()
        window.append((key, history.get(key, 0)))
    return window
