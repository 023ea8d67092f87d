"""XP rules, aggregation, and level math.

All XP is recomputed from checklist state on every call so totals cannot
double-count or drift. The cached ``xp_earned`` fields are written for display
and never read back as input.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import Assignment, Lecture, Program, Week

LECTURE_WATCH = 5
LECTURE_MEMORY = 7
LECTURE_ACTIVITY = 1
LECTURE_FINAL = 5
LECTURE_REVISION = 10
PRACTICE_Q = 2
GRADED_Q = 2
WEEKLY_MEMORY = 10
WEEKLY_FINAL = 10
WEEK_COMPLETE = 15
XP_PER_LEVEL = 250
MAX_FREEZES = 3


@dataclass(frozen=True)
class WeekXPBreakdown:
    """Per-source XP split for one week."""

    lecture_xp: int
    practice_xp: int
    graded_xp: int
    memory_xp: int
    final_xp: int
    completion_xp: int

    @property
    def total(self) -> int:
        return (
            self.lecture_xp + self.practice_xp + self.graded_xp + self.memory_xp + self.final_xp + self.completion_xp
        )


def calc_lecture_xp(lecture: Lecture) -> int:
    """Return XP earned by one lecture."""
    xp = 0
    if lecture.watched:
        xp += LECTURE_WATCH
    if lecture.memory_note:
        xp += LECTURE_MEMORY
    if lecture.final_note:
        xp += LECTURE_FINAL
    xp += _clamp(lecture.activity_done, 0, lecture.activity_total) * LECTURE_ACTIVITY
    xp += max(0, lecture.revision_count) * LECTURE_REVISION
    return xp


def is_lecture_core_complete(lecture: Lecture) -> bool:
    """Return whether watched, memory note, and final note are all ticked."""
    return lecture.watched and lecture.memory_note and lecture.final_note


def is_week_core_complete(week: Week) -> bool:
    """Return whether every lecture is core complete; empty weeks never are."""
    if not week.lectures:
        return False
    return all(is_lecture_core_complete(lecture) for lecture in week.lectures)


def week_xp_breakdown(week: Week) -> WeekXPBreakdown:
    """Return XP for one week split by source."""
    return WeekXPBreakdown(
        lecture_xp=sum(calc_lecture_xp(lecture) for lecture in week.lectures),
        practice_xp=_assignment_done(week.practice_assignment) * PRACTICE_Q,
        graded_xp=_assignment_done(week.graded_assignment) * GRADED_Q,
        memory_xp=WEEKLY_MEMORY if week.weekly_memory_note else 0,
        final_xp=WEEKLY_FINAL if week.weekly_final_note else 0,
        completion_xp=WEEK_COMPLETE if week.week_completed and is_week_core_complete(week) else 0,
    )


def recalculate_total_xp(program: Program) -> int:
    """Recompute XP for every lecture and week and return the program total.

    Writes ``xp_earned`` on each lecture and week. The completion bonus is only
    counted while the week is both marked complete and core complete, so a week
    whose core breaks stops earning it even before the flag is cleared.
    """
    grand_total = 0
    for week in program.weeks:
        week_total = 0
        for lecture in week.lectures:
            lecture.xp_earned = calc_lecture_xp(lecture)
            week_total += lecture.xp_earned

        week_total += _assignment_done(week.practice_assignment) * PRACTICE_Q
        week_total += _assignment_done(week.graded_assignment) * GRADED_Q
        if week.weekly_memory_note:
            week_total += WEEKLY_MEMORY
        if week.weekly_final_note:
            week_total += WEEKLY_FINAL
        if week.week_completed and is_week_core_complete(week):
            week_total += WEEK_COMPLETE

        week.xp_earned = week_total
        grand_total += week_total
    return grand_total


def week_progress(week: Week) -> float:
    """Return week completion as a 0-1 fraction.

    Each lecture counts three core units plus its activity questions; the week
    adds its assignment questions and two units for the weekly notes.
    """
    done = 0
    total = 0
    for lecture in week.lectures:
        total += 3
        done += int(lecture.watched) + int(lecture.memory_note) + int(lecture.final_note)
        if lecture.activity_total > 0:
            total += lecture.activity_total
            done += _clamp(lecture.activity_done, 0, lecture.activity_total)

    total += max(0, week.practice_assignment.total_questions) + max(0, week.graded_assignment.total_questions) + 2
    done += _assignment_done(week.practice_assignment) + _assignment_done(week.graded_assignment)
    done += int(week.weekly_memory_note) + int(week.weekly_final_note)
    return done / total if total > 0 else 0.0


def get_level(total_xp: int) -> int:
    """Return 1-indexed level for total XP."""
    return total_xp // XP_PER_LEVEL + 1


def get_level_progress(total_xp: int) -> float:
    """Return progress through the current level as 0-1."""
    return (total_xp % XP_PER_LEVEL) / XP_PER_LEVEL


def xp_to_next_level(total_xp: int) -> int:
    """Return XP needed to reach the next level."""
    return XP_PER_LEVEL - (total_xp % XP_PER_LEVEL)


def _assignment_done(assignment: Assignment) -> int:
    return _clamp(assignment.done_questions, 0, assignment.total_questions)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value or 0))
