from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from studyxp.models import Assignment, Lecture, Program, Week  # noqa: E402


def _make_lecture(lecture_id: str = "l1", **overrides: Any) -> Lecture:
    return Lecture(lecture_id=lecture_id, lecture_name=overrides.pop("lecture_name", lecture_id), **overrides)


def _make_week(
    week_id: str = "w1",
    lectures: list[Lecture] | None = None,
    practice: tuple[int, int] = (0, 0),
    graded: tuple[int, int] = (0, 0),
    **overrides: Any,
) -> Week:
    return Week(
        week_id=week_id,
        week_name=overrides.pop("week_name", week_id),
        lectures=lectures if lectures is not None else [],
        practice_assignment=Assignment(total_questions=practice[0], done_questions=practice[1]),
        graded_assignment=Assignment(total_questions=graded[0], done_questions=graded[1]),
        **overrides,
    )


def _core_lecture(lecture_id: str = "l1", **overrides: Any) -> Lecture:
    return _make_lecture(lecture_id, watched=True, memory_note=True, final_note=True, **overrides)


@pytest.fixture
def make_lecture() -> Callable[..., Lecture]:
    return _make_lecture


@pytest.fixture
def core_lecture() -> Callable[..., Lecture]:
    return _core_lecture


@pytest.fixture
def make_week() -> Callable[..., Week]:
    return _make_week


@pytest.fixture
def make_program() -> Callable[..., Program]:
    def build(weeks: list[Week] | None = None, **overrides: Any) -> Program:
        return Program(weeks=weeks if weeks is not None else [], **overrides)

    return build
