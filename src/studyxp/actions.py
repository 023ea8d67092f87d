"""Dispatchable actions; every program mutation is one of these."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .models import Program

LectureFlag = Literal["watched", "memory_note", "final_note"]
WeekFlag = Literal["weekly_memory_note", "weekly_final_note", "week_completed"]
LectureStepKind = Literal[
    "activity_total_inc",
    "activity_total_dec",
    "activity_done_inc",
    "activity_done_dec",
    "revision_inc",
    "revision_dec",
]
AssignmentKind = Literal["practice", "graded"]
AssignmentStepKind = Literal["total_inc", "total_dec", "done_inc", "done_dec"]

LECTURE_FLAGS: tuple[LectureFlag, ...] = ("watched", "memory_note", "final_note")
WEEK_FLAGS: tuple[WeekFlag, ...] = ("weekly_memory_note", "weekly_final_note", "week_completed")


@dataclass(frozen=True)
class AddWeek:
    name: str


@dataclass(frozen=True)
class RenameWeek:
    week_id: str
    name: str


@dataclass(frozen=True)
class DeleteWeek:
    week_id: str


@dataclass(frozen=True)
class ToggleWeekExpanded:
    week_id: str


@dataclass(frozen=True)
class AddLecture:
    week_id: str
    name: str


@dataclass(frozen=True)
class RenameLecture:
    week_id: str
    lecture_id: str
    name: str


@dataclass(frozen=True)
class DeleteLecture:
    week_id: str
    lecture_id: str


@dataclass(frozen=True)
class ToggleLectureExpanded:
    lecture_id: str


@dataclass(frozen=True)
class LectureToggle:
    """Set one lecture core flag."""

    week_id: str
    lecture_id: str
    field: LectureFlag
    value: bool


@dataclass(frozen=True)
class LectureStep:
    """Step an activity counter or the revision count by one."""

    week_id: str
    lecture_id: str
    step: LectureStepKind


@dataclass(frozen=True)
class SaveLectureNote:
    week_id: str
    lecture_id: str
    text: str


@dataclass(frozen=True)
class AssignmentStep:
    """Step a practice or graded assignment counter by one."""

    week_id: str
    kind: AssignmentKind
    step: AssignmentStepKind


@dataclass(frozen=True)
class WeekToggle:
    """Set one weekly flag; completion is gated on lecture core actions."""

    week_id: str
    field: WeekFlag
    value: bool


@dataclass(frozen=True)
class ImportProgram:
    """Replace the live program with an already validated one."""

    program: Program


Action = (
    AddWeek
    | RenameWeek
    | DeleteWeek
    | ToggleWeekExpanded
    | AddLecture
    | RenameLecture
    | DeleteLecture
    | ToggleLectureExpanded
    | LectureToggle
    | LectureStep
    | SaveLectureNote
    | AssignmentStep
    | WeekToggle
    | ImportProgram
)
