"""Application state, action dispatch, and the session facade."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Literal, assert_never

from .actions import (
    Action,
    AddLecture,
    AddWeek,
    AssignmentStep,
    DeleteLecture,
    DeleteWeek,
    ImportProgram,
    LectureStep,
    LectureToggle,
    RenameLecture,
    RenameWeek,
    SaveLectureNote,
    ToggleLectureExpanded,
    ToggleWeekExpanded,
    WeekToggle,
)
from .models import Program, new_lecture, new_week
from .progress import ExportedProgram, ProgressStore
from .stats import LifetimeStats, compute_lifetime_stats, xp_history_window
from .streak import apply_streak
from .xp import (
    MAX_FREEZES,
    WEEK_COMPLETE,
    WeekXPBreakdown,
    get_level,
    is_week_core_complete,
    recalculate_total_xp,
    week_xp_breakdown,
)

logger = logging.getLogger(__name__)

HISTORY_RETENTION_DAYS = 365
GATE_MESSAGE = "Complete all lecture core actions first."
NAME_REQUIRED_MESSAGE = "Name is required."
SAVE_WARNING = "Progress could not be saved; changes are kept in memory until the next save succeeds."

DispatchStatus = Literal["committed", "ui", "ignored", "rejected"]
TodayFn = Callable[[], date]


@dataclass
class UiState:
    """Expansion state shown to renderers; never persisted."""

    expanded_weeks: set[str] = field(default_factory=set)
    expanded_lectures: set[str] = field(default_factory=set)


@dataclass
class AppState:
    """The live program plus UI-only state, written only by ``dispatch``."""

    program: Program
    ui: UiState = field(default_factory=UiState)


@dataclass(frozen=True)
class RenderSnapshot:
    """What render collaborators receive after each dispatch."""

    program: Program
    expanded_weeks: frozenset[str]
    expanded_lectures: frozenset[str]


RenderFn = Callable[[RenderSnapshot], None]


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one dispatched action."""

    status: DispatchStatus
    message: str | None = None
    xp_gained: int = 0
    saved: bool | None = None
    warning: str | None = None


@dataclass(frozen=True)
class SessionStart:
    """Outcome of opening a session."""

    program: Program
    freeze_used: bool
    saved: bool


_IGNORED = DispatchResult(status="ignored")


def sync_xp(program: Program) -> int:
    """Recompute total XP and level and return the non-negative gain."""
    previous = program.total_xp
    program.total_xp = recalculate_total_xp(program)
    program.level = get_level(program.total_xp)
    return max(0, program.total_xp - previous)


def record_xp_history(program: Program, gained: int, today: date) -> None:
    """Add gained XP to today's entry and prune entries past retention."""
    if gained <= 0:
        return
    key = today.isoformat()
    program.xp_history[key] = program.xp_history.get(key, 0) + gained
    cutoff = (today - timedelta(days=HISTORY_RETENTION_DAYS)).isoformat()
    for stale in [day for day in program.xp_history if day < cutoff]:
        del program.xp_history[stale]


def enforce_completion_gate(program: Program) -> None:
    """Clear completion on weeks whose lectures are no longer all core complete."""
    for week in program.weeks:
        if week.week_completed and not is_week_core_complete(week):
            week.week_completed = False


def snapshot(state: AppState) -> RenderSnapshot:
    """Return render snapshot for current state."""
    return RenderSnapshot(
        program=state.program,
        expanded_weeks=frozenset(state.ui.expanded_weeks),
        expanded_lectures=frozenset(state.ui.expanded_lectures),
    )


def dispatch(
    state: AppState,
    action: Action,
    *,
    store: ProgressStore,
    today: date,
    listeners: Iterable[RenderFn] = (),
) -> DispatchResult:
    """Apply one action, then recompute XP, record history, save, and notify."""
    listeners = tuple(listeners)
    result = _apply(state, action)
    if result.status == "ignored":
        logger.debug("Ignored %s: target not found", type(action).__name__)
        return result
    if result.status == "rejected":
        logger.info("Rejected %s: %s", type(action).__name__, result.message)
        _notify(state, listeners)
        return result
    if result.status == "ui":
        _notify(state, listeners)
        return result

    enforce_completion_gate(state.program)
    gained = sync_xp(state.program)
    record_xp_history(state.program, gained, today)
    saved = store.save(state.program)
    if not saved:
        logger.warning("Program not persisted after %s", type(action).__name__)
    _notify(state, listeners)
    return DispatchResult(
        status="committed",
        message=result.message,
        xp_gained=gained,
        saved=saved,
        warning=None if saved else SAVE_WARNING,
    )


def _notify(state: AppState, listeners: tuple[RenderFn, ...]) -> None:
    if not listeners:
        return
    current = snapshot(state)
    for listener in listeners:
        listener(current)


def _committed(message: str | None = None) -> DispatchResult:
    return DispatchResult(status="committed", message=message)


def _apply(state: AppState, action: Action) -> DispatchResult:
    """Mutate state for one action; the caller runs the commit sequence."""
    program = state.program
    ui = state.ui

    if isinstance(action, ToggleWeekExpanded):
        _toggle(ui.expanded_weeks, action.week_id)
        return DispatchResult(status="ui")

    if isinstance(action, ToggleLectureExpanded):
        _toggle(ui.expanded_lectures, action.lecture_id)
        return DispatchResult(status="ui")

    if isinstance(action, AddWeek):
        name = action.name.strip()
        if not name:
            return DispatchResult(status="rejected", message=NAME_REQUIRED_MESSAGE)
        week = new_week(name)
        program.weeks.append(week)
        ui.expanded_weeks.add(week.week_id)
        return _committed("Week added.")

    if isinstance(action, RenameWeek):
        week = program.find_week(action.week_id)
        if week is None:
            return _IGNORED
        name = action.name.strip()
        if not name:
            return DispatchResult(status="rejected", message=NAME_REQUIRED_MESSAGE)
        week.week_name = name
        return _committed("Week renamed.")

    if isinstance(action, DeleteWeek):
        week = program.find_week(action.week_id)
        if week is None:
            return _IGNORED
        program.weeks = [item for item in program.weeks if item.week_id != action.week_id]
        ui.expanded_weeks.discard(action.week_id)
        ui.expanded_lectures.difference_update(lecture.lecture_id for lecture in week.lectures)
        return _committed("Week deleted.")

    if isinstance(action, AddLecture):
        week = program.find_week(action.week_id)
        if week is None:
            return _IGNORED
        name = action.name.strip()
        if not name:
            return DispatchResult(status="rejected", message=NAME_REQUIRED_MESSAGE)
        week.lectures.append(new_lecture(name))
        ui.expanded_weeks.add(week.week_id)
        return _committed("Lecture added.")

    if isinstance(action, RenameLecture):
        lecture = program.find_lecture(action.week_id, action.lecture_id)
        if lecture is None:
            return _IGNORED
        name = action.name.strip()
        if not name:
            return DispatchResult(status="rejected", message=NAME_REQUIRED_MESSAGE)
        lecture.lecture_name = name
        return _committed("Lecture renamed.")

    if isinstance(action, DeleteLecture):
        week = program.find_week(action.week_id)
        if week is None or week.find_lecture(action.lecture_id) is None:
            return _IGNORED
        week.lectures = [item for item in week.lectures if item.lecture_id != action.lecture_id]
        ui.expanded_lectures.discard(action.lecture_id)
        # Checked now rather than at the next recompute.
        if week.week_completed and not is_week_core_complete(week):
            week.week_completed = False
        return _committed("Lecture deleted.")

    if isinstance(action, LectureToggle):
        lecture = program.find_lecture(action.week_id, action.lecture_id)
        if lecture is None:
            return _IGNORED
        setattr(lecture, action.field, action.value)
        return _committed()

    if isinstance(action, LectureStep):
        lecture = program.find_lecture(action.week_id, action.lecture_id)
        if lecture is None:
            return _IGNORED
        step = action.step
        if step == "activity_total_inc":
            lecture.activity_total += 1
        elif step == "activity_total_dec":
            lecture.activity_total = max(0, lecture.activity_total - 1)
            lecture.activity_done = min(lecture.activity_done, lecture.activity_total)
        elif step == "activity_done_inc":
            if lecture.activity_done < lecture.activity_total:
                lecture.activity_done += 1
        elif step == "activity_done_dec":
            if lecture.activity_done > 0:
                lecture.activity_done -= 1
        elif step == "revision_inc":
            lecture.revision_count += 1
        elif step == "revision_dec":
            if lecture.revision_count > 0:
                lecture.revision_count -= 1
        else:
            assert_never(step)
        return _committed()

    if isinstance(action, SaveLectureNote):
        lecture = program.find_lecture(action.week_id, action.lecture_id)
        if lecture is None:
            return _IGNORED
        lecture.notes = action.text
        return _committed()

    if isinstance(action, AssignmentStep):
        week = program.find_week(action.week_id)
        if week is None:
            return _IGNORED
        assignment = week.practice_assignment if action.kind == "practice" else week.graded_assignment
        direction = action.step
        if direction == "total_inc":
            assignment.total_questions += 1
        elif direction == "total_dec":
            assignment.total_questions = max(0, assignment.total_questions - 1)
            assignment.done_questions = min(assignment.done_questions, assignment.total_questions)
        elif direction == "done_inc":
            if assignment.done_questions < assignment.total_questions:
                assignment.done_questions += 1
        elif direction == "done_dec":
            if assignment.done_questions > 0:
                assignment.done_questions -= 1
        else:
            assert_never(direction)
        return _committed()

    if isinstance(action, WeekToggle):
        week = program.find_week(action.week_id)
        if week is None:
            return _IGNORED
        if action.field == "week_completed" and action.value:
            if not is_week_core_complete(week):
                return DispatchResult(status="rejected", message=GATE_MESSAGE)
            if week.week_completed:
                return _committed()
            week.week_completed = True
            # One freeze per week, however often it is re-completed.
            if not week.freeze_granted:
                week.freeze_granted = True
                program.streak_freezes = min(MAX_FREEZES, program.streak_freezes + 1)
            return _committed(f"Week complete! +{WEEK_COMPLETE} XP bonus")
        setattr(week, action.field, action.value)
        return _committed()

    if isinstance(action, ImportProgram):
        state.program = action.program
        week_ids = {week.week_id for week in action.program.weeks}
        lecture_ids = {lecture.lecture_id for week in action.program.weeks for lecture in week.lectures}
        ui.expanded_weeks.intersection_update(week_ids)
        ui.expanded_lectures.intersection_update(lecture_ids)
        return _committed("Progress imported.")

    assert_never(action)


def _toggle(items: set[str], key: str) -> None:
    if key in items:
        items.discard(key)
    else:
        items.add(key)


class StudyService:
    """Coordinates the stored program, the clock, and render listeners."""

    def __init__(self, db_path: Path | str, today_fn: TodayFn = date.today) -> None:
        """Initialize service with database path and clock."""
        self.store = ProgressStore(db_path)
        self.state = AppState(program=Program())
        self._today_fn = today_fn
        self._listeners: list[RenderFn] = []

    @property
    def program(self) -> Program:
        return self.state.program

    def subscribe(self, listener: RenderFn) -> None:
        """Register a render collaborator."""
        self._listeners.append(listener)

    def start_session(self) -> SessionStart:
        """Load program, advance the streak once, and resync XP."""
        program = self.store.load()
        freeze_used = apply_streak(program, self._today_fn())
        sync_xp(program)
        self.state = AppState(program=program)
        saved = self.store.save(program)
        if not saved:
            logger.warning("Program not persisted at session start")
        _notify(self.state, tuple(self._listeners))
        return SessionStart(program=program, freeze_used=freeze_used, saved=saved)

    def dispatch(self, action: Action) -> DispatchResult:
        """Dispatch one action against the live program."""
        return dispatch(self.state, action, store=self.store, today=self._today_fn(), listeners=self._listeners)

    def stats(self) -> LifetimeStats:
        """Return lifetime statistics for the live program."""
        return compute_lifetime_stats(self.state.program, self._today_fn())

    def history_window(self, days: int = 30) -> list[tuple[str, int]]:
        """Return recent daily XP, oldest first."""
        return xp_history_window(self.state.program.xp_history, self._today_fn(), days)

    def week_breakdown(self, week_id: str) -> WeekXPBreakdown | None:
        """Return XP split for one week."""
        week = self.state.program.find_week(week_id)
        if week is None:
            return None
        return week_xp_breakdown(week)

    def export_to(self, export_path: Path | str) -> ExportedProgram:
        """Write the program export to a file, or into a directory under its suggested name."""
        exported = self.store.export_program(self.state.program, self._today_fn())
        path = Path(export_path)
        if path.is_dir():
            path = path / exported.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(exported.data)
        return exported

    def import_from(self, import_path: Path | str) -> DispatchResult:
        """Validate an export file and replace the live program with it."""
        program = self.store.import_program(Path(import_path).read_bytes())
        return self.dispatch(ImportProgram(program))

    def close(self) -> None:
        """Close resources."""
        self.store.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass
