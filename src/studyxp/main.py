"""CLI entrypoint for the study progress tracker."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from . import __version__
from .actions import (
    AddLecture,
    AddWeek,
    AssignmentKind,
    AssignmentStep,
    AssignmentStepKind,
    DeleteLecture,
    DeleteWeek,
    LectureFlag,
    LectureStep,
    LectureStepKind,
    LectureToggle,
    RenameLecture,
    RenameWeek,
    SaveLectureNote,
    WeekFlag,
    WeekToggle,
)
from .models import Lecture, Week
from .progress import ImportValidationError
from .service import DispatchResult, RenderSnapshot, StudyService
from .xp import MAX_FREEZES, get_level_progress, is_lecture_core_complete, week_progress, xp_to_next_level

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
DEFAULT_DB_PATH = Path(".studyxp") / "progress.db"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
MENU_QUIT_COMMANDS = {"q"}
MENU_BACK_COMMANDS = {"b"}
ACTIVITY_STEPS: dict[str, LectureStepKind] = {
    "t+": "activity_total_inc",
    "t-": "activity_total_dec",
    "d+": "activity_done_inc",
    "d-": "activity_done_dec",
}
ASSIGNMENT_STEPS: dict[str, AssignmentStepKind] = {
    "t+": "total_inc",
    "t-": "total_dec",
    "d+": "done_inc",
    "d-": "done_dec",
}


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def configure_logging(level: str = "WARNING") -> None:
    """Send log records to stderr so they never mix with menu output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _service(db_path: Path | str) -> StudyService:
    """Create app service for a database path."""
    return StudyService(db_path=Path(db_path) if db_path != ":memory:" else db_path)


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="studyxp", description="Week and lecture study tracker with XP and streaks")
    parser.add_argument("--db", default=str(DEFAULT_DB_PATH), help="progress database path")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("play", help="interactive shell (default)")
    commands.add_parser("stats", help="print lifetime stats")
    export_parser = commands.add_parser("export", help="export progress to a JSON file")
    export_parser.add_argument("path")
    import_parser = commands.add_parser("import", help="replace progress with a JSON export")
    import_parser.add_argument("path")
    import_parser.add_argument("--yes", action="store_true", help="skip confirmation")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    command = args.command or "play"
    if command == "stats":
        return stats_command(args.db)
    if command == "export":
        return export_command(args.db, args.path)
    if command == "import":
        return import_command(args.db, args.path, confirmed=args.yes)
    return play_shell(args.db)


def play_shell(db_path: Path | str = DEFAULT_DB_PATH, input_fn: InputFn = input, print_fn: PrintFn = print) -> int:
    """Run persistent menu-driven shell."""
    service = _service(db_path)
    try:
        service.subscribe(lambda snap: _render_header(snap, print_fn))
        session = service.start_session()
        if session.freeze_used:
            print_fn("A streak freeze covered your missed day.")
        if not session.saved:
            print_fn("Warning: progress could not be saved.")
        try:
            while True:
                print_fn("\n=== Study Progress ===")
                print_fn("1) Weeks")
                print_fn("2) Add week")
                print_fn("3) Stats")
                print_fn("4) XP history")
                print_fn("5) Export progress")
                print_fn("6) Import progress")
                print_fn("q) Quit")
                choice = input_fn("Choose: ").strip().lower()

                if choice == "1":
                    _weeks_flow(service, input_fn, print_fn)
                elif choice == "2":
                    name = input_fn("Week name: ").strip()
                    _report(service.dispatch(AddWeek(name)), print_fn)
                elif choice == "3":
                    _stats_flow(service, print_fn)
                elif choice == "4":
                    _history_flow(service, print_fn)
                elif choice == "5":
                    _export_flow(service, input_fn, print_fn)
                elif choice == "6":
                    _import_flow(service, input_fn, print_fn)
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
        except QuitApp:
            return 0
    finally:
        service.close()


def stats_command(db_path: Path | str, print_fn: PrintFn = print) -> int:
    """Print lifetime stats and exit."""
    service = _service(db_path)
    try:
        service.start_session()
        _stats_flow(service, print_fn)
        return 0
    finally:
        service.close()


def export_command(db_path: Path | str, export_path: str, print_fn: PrintFn = print) -> int:
    """Export progress and exit."""
    service = _service(db_path)
    try:
        service.start_session()
        try:
            exported = service.export_to(export_path)
        except OSError as exc:
            print_fn(f"Export failed: {exc}")
            return 1
        print_fn(f"Exported {len(exported.data)} bytes to {export_path}")
        return 0
    finally:
        service.close()


def import_command(
    db_path: Path | str,
    import_path: str,
    *,
    confirmed: bool = False,
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
) -> int:
    """Replace progress with an export file and exit."""
    service = _service(db_path)
    try:
        service.start_session()
        if not confirmed and not _confirm_replace(input_fn, print_fn):
            print_fn("Import cancelled.")
            return 1
        try:
            result = service.import_from(import_path)
        except (ImportValidationError, OSError) as exc:
            print_fn(f"Import failed: {exc}")
            return 1
        _report(result, print_fn)
        return 0
    finally:
        service.close()


def _render_header(snap: RenderSnapshot, print_fn: PrintFn) -> None:
    """Render collaborator: one status line per committed change."""
    program = snap.program
    percent = get_level_progress(program.total_xp) * 100
    print_fn(
        f"LVL {program.level} | {program.total_xp} XP ({percent:.0f}%, {xp_to_next_level(program.total_xp)} to next)"
        f" | streak {program.streak}d | freezes {program.streak_freezes}/{MAX_FREEZES}"
    )


def _report(result: DispatchResult, print_fn: PrintFn) -> None:
    """Print advisory and warning text from a dispatch."""
    if result.message:
        print_fn(result.message)
    if result.xp_gained > 0:
        print_fn(f"+{result.xp_gained} XP")
    if result.warning:
        print_fn(f"Warning: {result.warning}")


def _choose_index(count: int, prompt: str, input_fn: InputFn, print_fn: PrintFn) -> int | None:
    """Return zero-based selection, or None for back/invalid."""
    choice = input_fn(prompt).strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return None
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit():
        print_fn("Invalid choice.")
        return None
    index = int(choice) - 1
    if not (0 <= index < count):
        print_fn("Invalid choice.")
        return None
    return index


def _weeks_flow(service: StudyService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """List weeks and open one."""
    weeks = service.program.weeks
    print_fn("\n=== Weeks ===")
    if not weeks:
        print_fn("No weeks yet. Add your first week to begin.")
        return
    name_width = max(len("Week"), max(len(week.week_name) for week in weeks))
    header = f"{'#':>2} {'Week':<{name_width}} {'XP':>5} {'Done':>5} Status"
    print_fn(header)
    print_fn("-" * len(header))
    for idx, week in enumerate(weeks, start=1):
        status = "completed" if week.week_completed else "open"
        print_fn(
            f"{idx:>2} {week.week_name:<{name_width}} {week.xp_earned:>5} {week_progress(week) * 100:>4.0f}% {status}"
        )
    print_fn("b) Back")
    print_fn("q) Quit")
    index = _choose_index(len(weeks), "Choose week: ", input_fn, print_fn)
    if index is None:
        return
    _week_flow(service, weeks[index].week_id, input_fn, print_fn)


def _week_flow(service: StudyService, week_id: str, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Menu for one week."""
    while True:
        week = service.program.find_week(week_id)
        if week is None:
            return
        _print_week(service, week, print_fn)
        print_fn("1) Open lecture")
        print_fn("2) Add lecture")
        print_fn("3) Practice assignment")
        print_fn("4) Graded assignment")
        print_fn("5) Toggle weekly memory note")
        print_fn("6) Toggle weekly final note")
        print_fn("7) Toggle week completed")
        print_fn("8) Rename week")
        print_fn("9) Delete week")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            if not week.lectures:
                print_fn("No lectures yet.")
                continue
            index = _choose_index(len(week.lectures), "Choose lecture: ", input_fn, print_fn)
            if index is not None:
                _lecture_flow(service, week_id, week.lectures[index].lecture_id, input_fn, print_fn)
        elif choice == "2":
            name = input_fn("Lecture name: ").strip()
            _report(service.dispatch(AddLecture(week_id, name)), print_fn)
        elif choice in {"3", "4"}:
            kind: AssignmentKind = "practice" if choice == "3" else "graded"
            step = ASSIGNMENT_STEPS.get(input_fn("Step (t+ t- d+ d-): ").strip().lower())
            if step is None:
                print_fn("Invalid step.")
                continue
            _report(service.dispatch(AssignmentStep(week_id, kind, step)), print_fn)
        elif choice in {"5", "6", "7"}:
            field: WeekFlag = {"5": "weekly_memory_note", "6": "weekly_final_note", "7": "week_completed"}[choice]
            current = bool(getattr(week, field))
            _report(service.dispatch(WeekToggle(week_id, field, not current)), print_fn)
        elif choice == "8":
            name = input_fn("New week name: ").strip()
            _report(service.dispatch(RenameWeek(week_id, name)), print_fn)
        elif choice == "9":
            print_fn(f"WARNING: This permanently deletes '{week.week_name}' and all its lectures.")
            if input_fn("Type YES to confirm deletion: ").strip() != "YES":
                print_fn("Deletion cancelled.")
                continue
            _report(service.dispatch(DeleteWeek(week_id)), print_fn)
            return
        else:
            print_fn("Invalid choice.")


def _print_week(service: StudyService, week: Week, print_fn: PrintFn) -> None:
    """Print week checklist with per-lecture rows."""
    breakdown = service.week_breakdown(week.week_id)
    print_fn(f"\n=== Week: {week.week_name} ===")
    print_fn(f"- Progress: {week_progress(week) * 100:.1f}%")
    if breakdown is not None:
        print_fn(
            f"- XP: {breakdown.total} (lectures {breakdown.lecture_xp}, practice {breakdown.practice_xp}, "
            f"graded {breakdown.graded_xp}, notes {breakdown.memory_xp + breakdown.final_xp}, "
            f"completion {breakdown.completion_xp})"
        )
    practice = week.practice_assignment
    graded = week.graded_assignment
    print_fn(f"- Practice: {practice.done_questions}/{practice.total_questions}")
    print_fn(f"- Graded: {graded.done_questions}/{graded.total_questions}")
    print_fn(f"- Weekly notes: memory {_mark(week.weekly_memory_note)} final {_mark(week.weekly_final_note)}")
    print_fn(f"- Completed: {_mark(week.week_completed)}")
    if week.lectures:
        print_fn("Lectures:")
    for idx, lecture in enumerate(week.lectures, start=1):
        print_fn(f"{idx:>2}) {_lecture_row(lecture)}")


def _lecture_row(lecture: Lecture) -> str:
    flags = "".join(
        letter if value else "-"
        for letter, value in (("W", lecture.watched), ("M", lecture.memory_note), ("F", lecture.final_note))
    )
    core = " core" if is_lecture_core_complete(lecture) else ""
    return (
        f"{lecture.lecture_name} [{flags}] act {lecture.activity_done}/{lecture.activity_total}"
        f" rev {lecture.revision_count} XP {lecture.xp_earned}{core}"
    )


def _mark(value: bool) -> str:
    return "[x]" if value else "[ ]"


def _lecture_flow(service: StudyService, week_id: str, lecture_id: str, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Menu for one lecture."""
    toggles: dict[str, LectureFlag] = {"1": "watched", "2": "memory_note", "3": "final_note"}
    while True:
        lecture = service.program.find_lecture(week_id, lecture_id)
        if lecture is None:
            return
        print_fn(f"\n=== Lecture: {_lecture_row(lecture)} ===")
        if lecture.notes:
            print_fn(f"Notes: {lecture.notes}")
        print_fn("1) Toggle watched")
        print_fn("2) Toggle memory note")
        print_fn("3) Toggle final note")
        print_fn("4) Activity questions")
        print_fn("5) Log revision")
        print_fn("6) Undo revision")
        print_fn("7) Edit notes")
        print_fn("8) Rename lecture")
        print_fn("9) Delete lecture")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice in toggles:
            field = toggles[choice]
            current = bool(getattr(lecture, field))
            _report(service.dispatch(LectureToggle(week_id, lecture_id, field, not current)), print_fn)
        elif choice == "4":
            step = ACTIVITY_STEPS.get(input_fn("Step (t+ t- d+ d-): ").strip().lower())
            if step is None:
                print_fn("Invalid step.")
                continue
            _report(service.dispatch(LectureStep(week_id, lecture_id, step)), print_fn)
        elif choice == "5":
            _report(service.dispatch(LectureStep(week_id, lecture_id, "revision_inc")), print_fn)
        elif choice == "6":
            _report(service.dispatch(LectureStep(week_id, lecture_id, "revision_dec")), print_fn)
        elif choice == "7":
            text = input_fn("Notes: ")
            _report(service.dispatch(SaveLectureNote(week_id, lecture_id, text)), print_fn)
        elif choice == "8":
            name = input_fn("New lecture name: ").strip()
            _report(service.dispatch(RenameLecture(week_id, lecture_id, name)), print_fn)
        elif choice == "9":
            if input_fn(f"Type YES to delete '{lecture.lecture_name}': ").strip() != "YES":
                print_fn("Deletion cancelled.")
                continue
            _report(service.dispatch(DeleteLecture(week_id, lecture_id)), print_fn)
            return
        else:
            print_fn("Invalid choice.")


def _stats_flow(service: StudyService, print_fn: PrintFn) -> None:
    """Print lifetime stats."""
    stats = service.stats()
    rows = [
        ("Total XP", str(stats.total_xp)),
        ("Level", str(stats.level)),
        ("Streak", f"{stats.streak}d"),
        ("Best streak", f"{stats.best_streak}d"),
        ("Active days", str(stats.active_days)),
        ("XP this month", str(stats.xp_this_month)),
        ("Weeks done", f"{stats.weeks_completed}/{stats.total_weeks}"),
        ("Lectures core done", f"{stats.completed_lectures}/{stats.total_lectures}"),
        ("Total revisions", str(stats.total_revisions)),
        ("Activity Qs done", f"{stats.activity_done}/{stats.activity_total}"),
        ("Practice Qs done", f"{stats.practice_done}/{stats.practice_total}"),
        ("Graded Qs done", f"{stats.graded_done}/{stats.graded_total}"),
        ("Streak freezes", f"{stats.streak_freezes}/{MAX_FREEZES}"),
    ]
    label_width = max(len(label) for label, _ in rows)
    print_fn("\n=== Lifetime Stats ===")
    for label, value in rows:
        print_fn(f"{label:<{label_width}} {value}")


def _history_flow(service: StudyService, print_fn: PrintFn, days: int = 14) -> None:
    """Print recent daily XP as a text bar chart."""
    window = service.history_window(days)
    peak = max([value for _, value in window] + [1])
    print_fn(f"\n=== XP, last {days} days ===")
    for day, value in window:
        bar = "#" * round(20 * value / peak)
        print_fn(f"{day} {value:>5} {bar}")


def _export_flow(service: StudyService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Export progress to a JSON file."""
    print_fn("\n=== Export Progress ===")
    path_text = input_fn("Export file or directory path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        exported = service.export_to(path_text)
    except OSError as exc:
        print_fn(f"Export failed: {exc}")
        return
    print_fn(f"Exported progress ({exported.filename}) to {path_text}")


def _import_flow(service: StudyService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Replace progress with a JSON export after confirmation."""
    print_fn("\n=== Import Progress ===")
    path_text = input_fn("Import file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    if not _confirm_replace(input_fn, print_fn):
        print_fn("Import cancelled.")
        return
    try:
        result = service.import_from(path_text)
    except (ImportValidationError, OSError) as exc:
        print_fn(f"Import failed: {exc}")
        return
    _report(result, print_fn)


def _confirm_replace(input_fn: InputFn, print_fn: PrintFn) -> bool:
    print_fn("WARNING: Importing replaces all current progress.")
    return input_fn("Type YES to confirm import: ").strip() == "YES"


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
