import json
from datetime import date
from pathlib import Path

import pytest

from studyxp.actions import (
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
from studyxp.models import Program
from studyxp.progress import ImportValidationError
from studyxp.service import (
    GATE_MESSAGE,
    NAME_REQUIRED_MESSAGE,
    SAVE_WARNING,
    AppState,
    RenderSnapshot,
    StudyService,
    dispatch,
    record_xp_history,
    sync_xp,
)

TODAY = date(2026, 1, 11)


def _service(today: date = TODAY) -> tuple[StudyService, list[RenderSnapshot]]:
    service = StudyService(":memory:", today_fn=lambda: today)
    rendered: list[RenderSnapshot] = []
    service.subscribe(rendered.append)
    service.start_session()
    rendered.clear()
    return service, rendered


def _week_with_lecture(service: StudyService) -> tuple[str, str]:
    service.dispatch(AddWeek("Week 1"))
    week_id = service.program.weeks[-1].week_id
    service.dispatch(AddLecture(week_id, "Lecture 1"))
    lecture_id = service.program.weeks[-1].lectures[-1].lecture_id
    return week_id, lecture_id


def _complete_core(service: StudyService, week_id: str, lecture_id: str) -> None:
    for flag in ("watched", "memory_note", "final_note"):
        service.dispatch(LectureToggle(week_id, lecture_id, flag, True))


def test_add_week_commits_saves_and_expands() -> None:
    service, rendered = _service()
    result = service.dispatch(AddWeek("  Linear Algebra  "))

    assert result.status == "committed"
    assert result.saved is True
    assert result.warning is None
    week = service.program.weeks[0]
    assert week.week_name == "Linear Algebra"
    assert week.week_id in service.state.ui.expanded_weeks
    assert service.store.load().weeks[0].week_id == week.week_id
    assert len(rendered) == 1


def test_blank_names_are_rejected() -> None:
    service, rendered = _service()
    result = service.dispatch(AddWeek("   "))
    assert result.status == "rejected"
    assert result.message == NAME_REQUIRED_MESSAGE
    assert service.program.weeks == []
    assert len(rendered) == 1

    week_id, lecture_id = _week_with_lecture(service)
    assert service.dispatch(RenameWeek(week_id, "")).status == "rejected"
    assert service.dispatch(AddLecture(week_id, "")).status == "rejected"
    assert service.dispatch(RenameLecture(week_id, lecture_id, " ")).status == "rejected"


def test_rename_week_and_lecture() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    service.dispatch(RenameWeek(week_id, "Calculus"))
    service.dispatch(RenameLecture(week_id, lecture_id, "Limits"))
    assert service.program.weeks[0].week_name == "Calculus"
    assert service.program.weeks[0].lectures[0].lecture_name == "Limits"


def test_unknown_targets_are_ignored_without_render() -> None:
    service, rendered = _service()
    results = [
        service.dispatch(RenameWeek("missing", "x")),
        service.dispatch(DeleteWeek("missing")),
        service.dispatch(AddLecture("missing", "x")),
        service.dispatch(DeleteLecture("missing", "missing")),
        service.dispatch(LectureToggle("missing", "missing", "watched", True)),
        service.dispatch(LectureStep("missing", "missing", "revision_inc")),
        service.dispatch(SaveLectureNote("missing", "missing", "text")),
        service.dispatch(AssignmentStep("missing", "practice", "total_inc")),
        service.dispatch(WeekToggle("missing", "weekly_memory_note", True)),
    ]
    assert {result.status for result in results} == {"ignored"}
    assert rendered == []


def test_lecture_core_actions_award_xp_and_history() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)

    result = service.dispatch(LectureToggle(week_id, lecture_id, "watched", True))
    assert result.xp_gained == 5
    _complete_core(service, week_id, lecture_id)

    assert service.program.total_xp == 17
    assert service.program.weeks[0].lectures[0].xp_earned == 17
    assert service.program.xp_history == {"2026-01-11": 17}


def test_unticking_does_not_record_negative_history() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    service.dispatch(LectureToggle(week_id, lecture_id, "watched", True))
    result = service.dispatch(LectureToggle(week_id, lecture_id, "watched", False))
    assert result.xp_gained == 0
    assert service.program.total_xp == 0
    assert service.program.xp_history == {"2026-01-11": 5}


def test_week_completion_is_gated() -> None:
    service, rendered = _service()
    week_id, lecture_id = _week_with_lecture(service)
    service.dispatch(LectureToggle(week_id, lecture_id, "watched", True))
    rendered.clear()

    result = service.dispatch(WeekToggle(week_id, "week_completed", True))

    assert result.status == "rejected"
    assert result.message == GATE_MESSAGE
    assert service.program.weeks[0].week_completed is False
    assert service.store.load().weeks[0].week_completed is False
    assert len(rendered) == 1


def test_empty_week_cannot_be_completed() -> None:
    service, _ = _service()
    service.dispatch(AddWeek("Empty"))
    week_id = service.program.weeks[0].week_id
    assert service.dispatch(WeekToggle(week_id, "week_completed", True)).status == "rejected"


def test_week_completion_awards_bonus_and_freeze() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)

    result = service.dispatch(WeekToggle(week_id, "week_completed", True))

    assert result.status == "committed"
    assert result.message == "Week complete! +15 XP bonus"
    assert result.xp_gained == 15
    assert service.program.total_xp == 32
    assert service.program.streak_freezes == 1

    again = service.dispatch(WeekToggle(week_id, "week_completed", True))
    assert again.status == "committed"
    assert again.message is None
    assert service.program.streak_freezes == 1


def test_freezes_are_capped() -> None:
    service, _ = _service()
    service.program.streak_freezes = 3
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)
    service.dispatch(WeekToggle(week_id, "week_completed", True))
    assert service.program.streak_freezes == 3


def test_breaking_core_clears_completion() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)
    service.dispatch(WeekToggle(week_id, "week_completed", True))

    service.dispatch(LectureToggle(week_id, lecture_id, "watched", False))

    assert service.program.weeks[0].week_completed is False
    assert service.program.total_xp == 12


def test_adding_empty_lecture_clears_completion() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)
    service.dispatch(WeekToggle(week_id, "week_completed", True))

    service.dispatch(AddLecture(week_id, "Lecture 2"))

    assert service.program.weeks[0].week_completed is False
    assert service.program.total_xp == 17


def test_deleting_last_lecture_clears_completion() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)
    service.dispatch(WeekToggle(week_id, "week_completed", True))
    service.dispatch(ToggleLectureExpanded(lecture_id))

    result = service.dispatch(DeleteLecture(week_id, lecture_id))

    assert result.status == "committed"
    assert service.program.weeks[0].lectures == []
    assert service.program.weeks[0].week_completed is False
    assert service.program.total_xp == 0
    assert lecture_id not in service.state.ui.expanded_lectures


def test_delete_week_prunes_ui_state() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    service.dispatch(LectureToggle(week_id, lecture_id, "watched", True))
    service.dispatch(ToggleLectureExpanded(lecture_id))

    service.dispatch(DeleteWeek(week_id))

    assert service.program.weeks == []
    assert service.program.total_xp == 0
    assert service.state.ui.expanded_weeks == set()
    assert service.state.ui.expanded_lectures == set()


def test_lecture_steps_clamp_counts() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    lecture = service.program.weeks[0].lectures[0]

    service.dispatch(LectureStep(week_id, lecture_id, "activity_done_inc"))
    assert lecture.activity_done == 0
    service.dispatch(LectureStep(week_id, lecture_id, "activity_total_inc"))
    service.dispatch(LectureStep(week_id, lecture_id, "activity_total_inc"))
    service.dispatch(LectureStep(week_id, lecture_id, "activity_done_inc"))
    service.dispatch(LectureStep(week_id, lecture_id, "activity_done_inc"))
    assert (lecture.activity_total, lecture.activity_done) == (2, 2)
    service.dispatch(LectureStep(week_id, lecture_id, "activity_total_dec"))
    assert (lecture.activity_total, lecture.activity_done) == (1, 1)
    service.dispatch(LectureStep(week_id, lecture_id, "revision_dec"))
    assert lecture.revision_count == 0
    service.dispatch(LectureStep(week_id, lecture_id, "revision_inc"))
    assert lecture.revision_count == 1
    assert service.program.total_xp == 1 + 10


def test_revisions_raise_level() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    for _ in range(25):
        service.dispatch(LectureStep(week_id, lecture_id, "revision_inc"))
    assert service.program.total_xp == 250
    assert service.program.level == 2


def test_assignment_steps_clamp_counts() -> None:
    service, _ = _service()
    service.dispatch(AddWeek("Week"))
    week_id = service.program.weeks[0].week_id
    week = service.program.weeks[0]

    service.dispatch(AssignmentStep(week_id, "graded", "done_inc"))
    assert week.graded_assignment.done_questions == 0
    service.dispatch(AssignmentStep(week_id, "practice", "total_inc"))
    service.dispatch(AssignmentStep(week_id, "practice", "done_inc"))
    service.dispatch(AssignmentStep(week_id, "practice", "done_inc"))
    assert (week.practice_assignment.total_questions, week.practice_assignment.done_questions) == (1, 1)
    assert service.program.total_xp == 2
    service.dispatch(AssignmentStep(week_id, "practice", "total_dec"))
    assert week.practice_assignment.done_questions == 0
    service.dispatch(AssignmentStep(week_id, "practice", "total_dec"))
    assert week.practice_assignment.total_questions == 0


def test_weekly_notes_and_lecture_note() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    service.dispatch(WeekToggle(week_id, "weekly_memory_note", True))
    service.dispatch(WeekToggle(week_id, "weekly_final_note", True))
    service.dispatch(SaveLectureNote(week_id, lecture_id, "chain rule"))

    assert service.program.total_xp == 20
    assert service.store.load().weeks[0].lectures[0].notes == "chain rule"


def test_ui_toggles_do_not_save() -> None:
    service, rendered = _service()
    service.dispatch(AddWeek("Week"))
    week_id = service.program.weeks[0].week_id

    saves: list[Program] = []
    service.store.save = lambda program: saves.append(program) or True  # type: ignore[method-assign]
    result = service.dispatch(ToggleWeekExpanded(week_id))

    assert result.status == "ui"
    assert result.saved is None
    assert week_id not in service.state.ui.expanded_weeks
    assert saves == []
    assert rendered[-1].expanded_weeks == frozenset()
    service.dispatch(ToggleWeekExpanded(week_id))
    assert week_id in service.state.ui.expanded_weeks


def test_save_failure_keeps_state_and_warns() -> None:
    service, rendered = _service()
    service.store.close()

    result = service.dispatch(AddWeek("Offline"))

    assert result.status == "committed"
    assert result.saved is False
    assert result.warning == SAVE_WARNING
    assert service.program.weeks[0].week_name == "Offline"
    assert len(rendered) == 1


def test_history_prunes_old_entries(make_program) -> None:
    program = make_program(xp_history={"2024-12-01": 50, "2025-06-01": 7, "2026-01-11": 3})
    record_xp_history(program, 4, TODAY)
    assert program.xp_history == {"2025-06-01": 7, "2026-01-11": 7}


def test_history_ignores_zero_gain(make_program) -> None:
    program = make_program(xp_history={"2024-12-01": 50})
    record_xp_history(program, 0, TODAY)
    assert program.xp_history == {"2024-12-01": 50}


def test_sync_xp_returns_only_gains(core_lecture, make_week, make_program) -> None:
    program = make_program([make_week(lectures=[core_lecture()])], total_xp=100)
    assert sync_xp(program) == 0
    assert program.total_xp == 17
    assert sync_xp(program) == 0
    program.weeks[0].weekly_memory_note = True
    assert sync_xp(program) == 10


def test_import_program_records_no_history_when_consistent(core_lecture, make_week, make_program) -> None:
    service, _ = _service()
    week_id, _ = _week_with_lecture(service)
    service.dispatch(ToggleWeekExpanded(week_id))
    imported = make_program([make_week("w9", lectures=[core_lecture("l9")])], total_xp=17)

    result = service.dispatch(ImportProgram(imported))

    assert result.status == "committed"
    assert result.message == "Progress imported."
    assert result.xp_gained == 0
    assert service.program is imported
    assert service.program.xp_history == {}
    assert service.state.ui.expanded_weeks == set()
    assert service.store.load().weeks[0].week_id == "w9"


def test_standalone_dispatch_uses_given_state(make_program) -> None:
    service, _ = _service()
    state = AppState(program=make_program())
    rendered: list[RenderSnapshot] = []
    result = dispatch(state, AddWeek("Standalone"), store=service.store, today=TODAY, listeners=[rendered.append])
    assert result.status == "committed"
    assert state.program.weeks[0].week_name == "Standalone"
    assert rendered[0].program is state.program


def test_start_session_extends_streak(make_program) -> None:
    service = StudyService(":memory:", today_fn=lambda: date(2026, 1, 11))
    service.store.save(make_program(streak=7, best_streak=7, last_active_date="2026-01-10"))
    start = service.start_session()
    assert start.freeze_used is False
    assert start.saved is True
    assert service.program.streak == 8
    assert service.store.load().last_active_date == "2026-01-11"


def test_start_session_uses_freeze(make_program) -> None:
    service = StudyService(":memory:", today_fn=lambda: date(2026, 1, 12))
    service.store.save(make_program(streak=7, best_streak=7, streak_freezes=2, last_active_date="2026-01-10"))
    start = service.start_session()
    assert start.freeze_used is True
    assert service.program.streak == 8
    assert service.program.streak_freezes == 1


def test_start_session_resyncs_stale_xp(core_lecture, make_week, make_program) -> None:
    service = StudyService(":memory:", today_fn=lambda: TODAY)
    service.store.save(make_program([make_week(lectures=[core_lecture()])], total_xp=999, level=5))
    service.start_session()
    assert service.program.total_xp == 17
    assert service.program.level == 1
    assert service.program.xp_history == {}


def test_stats_history_and_breakdown() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)

    stats = service.stats()
    assert stats.completed_lectures == 1
    assert stats.xp_this_month == 17
    window = service.history_window(days=2)
    assert window == [("2026-01-10", 0), ("2026-01-11", 17)]
    breakdown = service.week_breakdown(week_id)
    assert breakdown is not None
    assert breakdown.lecture_xp == 17
    assert service.week_breakdown("missing") is None


def test_export_to_directory_and_import(tmp_path: Path) -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)

    exported = service.export_to(tmp_path)
    export_file = tmp_path / "studyxp-progress-2026-01-11.json"
    assert exported.filename == export_file.name
    assert json.loads(export_file.read_text(encoding="utf-8"))["totalXP"] == 17

    other, _ = _service()
    result = other.import_from(export_file)
    assert result.status == "committed"
    assert other.program.total_xp == 17
    assert other.program.xp_history == {"2026-01-11": 17}


def test_export_to_explicit_file_creates_parents(tmp_path: Path) -> None:
    service, _ = _service()
    target = tmp_path / "backups" / "mine.json"
    service.export_to(target)
    assert target.exists()


def test_import_from_invalid_file_leaves_program(tmp_path: Path) -> None:
    service, _ = _service()
    service.dispatch(AddWeek("Keep me"))
    bad = tmp_path / "bad.json"
    bad.write_text('{"weeks": "nope", "totalXP": 1}', encoding="utf-8")

    with pytest.raises(ImportValidationError):
        service.import_from(bad)
    assert service.program.weeks[0].week_name == "Keep me"


def test_recompleting_week_does_not_earn_second_freeze() -> None:
    service, _ = _service()
    week_id, lecture_id = _week_with_lecture(service)
    _complete_core(service, week_id, lecture_id)
    service.dispatch(WeekToggle(week_id, "week_completed", True))

    service.dispatch(LectureToggle(week_id, lecture_id, "watched", False))
    assert service.program.weeks[0].week_completed is False
    service.dispatch(LectureToggle(week_id, lecture_id, "watched", True))
    result = service.dispatch(WeekToggle(week_id, "week_completed", True))

    assert result.message == "Week complete! +15 XP bonus"
    assert service.program.weeks[0].week_completed is True
    assert service.program.streak_freezes == 1
    assert service.store.load().weeks[0].freeze_granted is True


def test_import_with_malformed_date_still_starts(tmp_path: Path) -> None:
    db_path = tmp_path / "progress.db"
    service = StudyService(db_path, today_fn=lambda: date(2026, 1, 11))
    service.start_session()
    bad_date = tmp_path / "bad-date.json"
    bad_date.write_text(
        '{"schemaVersion": 4, "weeks": [], "totalXP": 0, "streak": 4, "bestStreak": 4, "lastActiveDate": "10/01/2026"}',
        encoding="utf-8",
    )

    result = service.import_from(bad_date)
    assert result.status == "committed"
    assert service.program.last_active_date is None
    service.close()

    reopened = StudyService(db_path, today_fn=lambda: date(2026, 1, 12))
    start = reopened.start_session()
    assert start.program.streak == 1
    assert start.program.best_streak == 4
    assert start.program.last_active_date == "2026-01-12"
    reopened.close()
