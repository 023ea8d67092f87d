"""Core domain models for week/lecture study progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4

SCHEMA_VERSION = 4


@dataclass
class Assignment:
    """Question counter for a weekly practice or graded assignment."""

    total_questions: int = 0
    done_questions: int = 0


@dataclass
class Lecture:
    """One lecture checklist."""

    lecture_id: str
    lecture_name: str
    watched: bool = False
    memory_note: bool = False
    final_note: bool = False
    activity_total: int = 0
    activity_done: int = 0
    revision_count: int = 0
    notes: str = ""
    xp_earned: int = 0


@dataclass
class Week:
    """Study week grouping lectures and weekly assignments."""

    week_id: str
    week_name: str
    lectures: list[Lecture] = field(default_factory=list)
    practice_assignment: Assignment = field(default_factory=Assignment)
    graded_assignment: Assignment = field(default_factory=Assignment)
    weekly_memory_note: bool = False
    weekly_final_note: bool = False
    week_completed: bool = False
    freeze_granted: bool = False
    xp_earned: int = 0

    def find_lecture(self, lecture_id: str) -> Lecture | None:
        """Return lecture by id."""
        for lecture in self.lectures:
            if lecture.lecture_id == lecture_id:
                return lecture
        return None


@dataclass
class Program:
    """Root aggregate holding every week plus XP and streak counters."""

    weeks: list[Week] = field(default_factory=list)
    total_xp: int = 0
    level: int = 1
    streak: int = 0
    best_streak: int = 0
    streak_freezes: int = 0
    last_active_date: str | None = None
    xp_history: dict[str, int] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    def find_week(self, week_id: str) -> Week | None:
        """Return week by id."""
        for week in self.weeks:
            if week.week_id == week_id:
                return week
        return None

    def find_lecture(self, week_id: str, lecture_id: str) -> Lecture | None:
        """Return lecture by week and lecture id."""
        week = self.find_week(week_id)
        if week is None:
            return None
        return week.find_lecture(lecture_id)


def generate_id(prefix: str = "id") -> str:
    """Return a new opaque identifier."""
    return f"{prefix}_{uuid4().hex[:12]}"


def new_week(name: str) -> Week:
    """Create an empty week."""
    return Week(week_id=generate_id("w"), week_name=name)


def new_lecture(name: str) -> Lecture:
    """Create an empty lecture."""
    return Lecture(lecture_id=generate_id("l"), lecture_name=name)
