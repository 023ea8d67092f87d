"""SQLite persistence for the program document with forward-only migrations."""

from __future__ import annotations

import copy
import json
import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import cast

from .models import SCHEMA_VERSION, Assignment, Lecture, Program, Week
from .xp import MAX_FREEZES

logger = logging.getLogger(__name__)

DB_SCHEMA_VERSION = 1
STORAGE_KEY = "program"
EXPORT_FILENAME_PREFIX = "studyxp-progress"


class ImportValidationError(ValueError):
    """Raised when an import document does not have the program shape."""


@dataclass(frozen=True)
class ExportedProgram:
    """Serialized program plus suggested file name."""

    data: bytes
    filename: str


class ProgressStore:
    """Database access layer for the single program document."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize database and schema."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target)
        self._conn.row_factory = sqlite3.Row
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only table migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > DB_SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {DB_SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, DB_SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )

    def _migrate_to_v1(self) -> None:
        """Create the document table."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    body TEXT NOT NULL,
                    schema_version INTEGER NOT NULL,
                    saved_at TEXT NOT NULL
                )
                """)

    def load(self) -> Program:
        """Return stored program, or a fresh default if absent or unreadable."""
        try:
            row = self._conn.execute("SELECT body FROM documents WHERE key = ?", (STORAGE_KEY,)).fetchone()
        except sqlite3.Error:
            logger.exception("Load failed, using default program")
            return Program()
        if row is None:
            return Program()
        try:
            raw: object = json.loads(str(row["body"]))
        except json.JSONDecodeError:
            logger.error("Stored program is not valid JSON, using default program")
            return Program()
        if not isinstance(raw, dict):
            logger.error("Stored program root is not an object, using default program")
            return Program()
        return program_from_document(migrate_document(cast(dict[str, object], raw)))

    def save(self, program: Program) -> bool:
        """Persist program and return whether the write succeeded."""
        body = json.dumps(program_to_document(program))
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO documents (key, body, schema_version, saved_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        body = excluded.body,
                        schema_version = excluded.schema_version,
                        saved_at = excluded.saved_at
                    """,
                    (STORAGE_KEY, body, program.schema_version, datetime.now(UTC).isoformat()),
                )
        except sqlite3.Error:
            logger.exception("Save failed")
            return False
        return True

    def clear(self) -> None:
        """Delete the stored program."""
        with self._conn:
            self._conn.execute("DELETE FROM documents WHERE key = ?", (STORAGE_KEY,))

    def export_program(self, program: Program, today: date) -> ExportedProgram:
        """Serialize program for download with a date-stamped file name."""
        data = json.dumps(program_to_document(program), indent=2).encode("utf-8")
        return ExportedProgram(data=data, filename=f"{EXPORT_FILENAME_PREFIX}-{today.isoformat()}.json")

    def import_program(self, data: bytes | str) -> Program:
        """Validate, migrate, and build a program from exported bytes."""
        return program_from_document(migrate_document(validate_import_document(data)))

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


def validate_import_document(data: bytes | str) -> dict[str, object]:
    """Return parsed import document or raise ImportValidationError."""
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ImportValidationError("Import file is not UTF-8 text.") from exc
    else:
        text = data
    try:
        raw_obj: object = json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise ImportValidationError(f"Import file is not valid JSON: {exc.msg}.") from exc
    if not isinstance(raw_obj, dict):
        raise ImportValidationError("Import file root must be a JSON object.")
    raw = cast(dict[str, object], raw_obj)

    if not isinstance(raw.get("weeks"), list):
        raise ImportValidationError("Import file is missing a 'weeks' list.")
    total_xp = raw.get("totalXP")
    if isinstance(total_xp, bool) or not isinstance(total_xp, int | float):
        raise ImportValidationError("Import file is missing a numeric 'totalXP'.")
    if not math.isfinite(total_xp):
        raise ImportValidationError("Import file totalXP must be finite.")

    version = _coerce_int(raw.get("schemaVersion", 0))
    if version is None:
        raise ImportValidationError("Import file has invalid schemaVersion.")
    if version > SCHEMA_VERSION:
        raise ImportValidationError(f"Import file schema version {version} is newer than supported {SCHEMA_VERSION}.")
    return raw


def _reject_constant(name: str) -> object:
    raise ImportValidationError(f"Import file contains non-finite number {name}.")


def default_document() -> dict[str, object]:
    """Return the document form of a fresh program."""
    return program_to_document(Program())


def migrate_document(document: dict[str, object]) -> dict[str, object]:
    """Upgrade a stored document to the current schema version.

    Each step only adds missing fields; existing values are left untouched.
    Missing top-level keys are back-filled from the default document last.
    """
    data = copy.deepcopy(document)
    version = _coerce_int(data.get("schemaVersion", 0), default=0) or 0

    if version < 2:
        _migrate_to_v2(data)
    if version < 3:
        _migrate_to_v3(data)
    if version < 4:
        _migrate_to_v4(data)
    if version < SCHEMA_VERSION:
        data["schemaVersion"] = SCHEMA_VERSION

    for key, value in default_document().items():
        if key not in data or (data[key] is None and value is not None):
            data[key] = value
    return data


def _migrate_to_v2(data: dict[str, object]) -> None:
    """Add revision counts to lectures."""
    for lecture in _document_lectures(data):
        lecture.setdefault("revisionCount", 0)


def _migrate_to_v3(data: dict[str, object]) -> None:
    """Add quick notes to lectures."""
    for lecture in _document_lectures(data):
        lecture.setdefault("notes", "")


def _migrate_to_v4(data: dict[str, object]) -> None:
    """Add best streak and streak freeze pool."""
    if "bestStreak" not in data:
        data["bestStreak"] = max(0, _coerce_int(data.get("streak", 0), default=0) or 0)
    data.setdefault("streakFreezes", 0)


def _document_lectures(data: dict[str, object]) -> list[dict[str, object]]:
    lectures: list[dict[str, object]] = []
    weeks = data.get("weeks")
    if not isinstance(weeks, list):
        return lectures
    for week in cast(list[object], weeks):
        if not isinstance(week, dict):
            continue
        week_lectures = cast(dict[str, object], week).get("lectures")
        if not isinstance(week_lectures, list):
            continue
        for lecture in cast(list[object], week_lectures):
            if isinstance(lecture, dict):
                lectures.append(cast(dict[str, object], lecture))
    return lectures


def program_to_document(program: Program) -> dict[str, object]:
    """Return JSON-ready document for a program."""
    return {
        "schemaVersion": program.schema_version,
        "weeks": [_week_to_document(week) for week in program.weeks],
        "totalXP": program.total_xp,
        "level": program.level,
        "streak": program.streak,
        "bestStreak": program.best_streak,
        "streakFreezes": program.streak_freezes,
        "lastActiveDate": program.last_active_date,
        "xpHistory": dict(program.xp_history),
    }


def _week_to_document(week: Week) -> dict[str, object]:
    return {
        "weekId": week.week_id,
        "weekName": week.week_name,
        "lectures": [_lecture_to_document(lecture) for lecture in week.lectures],
        "practiceAssignment": _assignment_to_document(week.practice_assignment),
        "gradedAssignment": _assignment_to_document(week.graded_assignment),
        "weeklyMemoryNote": week.weekly_memory_note,
        "weeklyFinalNote": week.weekly_final_note,
        "weekCompleted": week.week_completed,
        "freezeGranted": week.freeze_granted,
        "xpEarned": week.xp_earned,
    }


def _lecture_to_document(lecture: Lecture) -> dict[str, object]:
    return {
        "lectureId": lecture.lecture_id,
        "lectureName": lecture.lecture_name,
        "watched": lecture.watched,
        "memoryNote": lecture.memory_note,
        "activityTotal": lecture.activity_total,
        "activityDone": lecture.activity_done,
        "finalNote": lecture.final_note,
        "revisionCount": lecture.revision_count,
        "notes": lecture.notes,
        "xpEarned": lecture.xp_earned,
    }


def _assignment_to_document(assignment: Assignment) -> dict[str, object]:
    return {"totalQuestions": assignment.total_questions, "doneQuestions": assignment.done_questions}


def program_from_document(document: dict[str, object]) -> Program:
    """Build a program from a migrated document, normalizing bad values."""
    weeks: list[Week] = []
    raw_weeks = document.get("weeks")
    if isinstance(raw_weeks, list):
        for item in cast(list[object], raw_weeks):
            week = _week_from_document(item)
            if week is not None:
                weeks.append(week)

    history: dict[str, int] = {}
    raw_history = document.get("xpHistory")
    if isinstance(raw_history, dict):
        for key, value in cast(dict[object, object], raw_history).items():
            amount = _coerce_int(value)
            if isinstance(key, str) and amount is not None:
                history[key] = max(0, amount)

    last_active = document.get("lastActiveDate")
    total_xp = max(0, _coerce_int(document.get("totalXP", 0), default=0) or 0)
    streak = max(0, _coerce_int(document.get("streak", 0), default=0) or 0)
    best_streak = max(streak, _coerce_int(document.get("bestStreak", 0), default=0) or 0)
    freezes = _coerce_int(document.get("streakFreezes", 0), default=0) or 0
    return Program(
        weeks=weeks,
        total_xp=total_xp,
        level=max(1, _coerce_int(document.get("level", 1), default=1) or 1),
        streak=streak,
        best_streak=best_streak,
        streak_freezes=min(max(0, freezes), MAX_FREEZES),
        last_active_date=_coerce_date(last_active),
        xp_history=history,
        schema_version=max(SCHEMA_VERSION, _coerce_int(document.get("schemaVersion"), default=0) or 0),
    )


def _week_from_document(raw: object) -> Week | None:
    if not isinstance(raw, dict):
        return None
    row = cast(dict[str, object], raw)
    week_id = row.get("weekId")
    if not isinstance(week_id, str) or not week_id.strip():
        return None
    lectures: list[Lecture] = []
    raw_lectures = row.get("lectures")
    if isinstance(raw_lectures, list):
        for item in cast(list[object], raw_lectures):
            lecture = _lecture_from_document(item)
            if lecture is not None:
                lectures.append(lecture)
    week_completed = _coerce_bool(row.get("weekCompleted"))
    return Week(
        week_id=week_id,
        week_name=_coerce_str(row.get("weekName")),
        lectures=lectures,
        practice_assignment=_assignment_from_document(row.get("practiceAssignment")),
        graded_assignment=_assignment_from_document(row.get("gradedAssignment")),
        weekly_memory_note=_coerce_bool(row.get("weeklyMemoryNote")),
        weekly_final_note=_coerce_bool(row.get("weeklyFinalNote")),
        week_completed=week_completed,
        freeze_granted=_coerce_bool(row.get("freezeGranted", week_completed)),
        xp_earned=_coerce_int(row.get("xpEarned", 0), default=0) or 0,
    )


def _lecture_from_document(raw: object) -> Lecture | None:
    if not isinstance(raw, dict):
        return None
    row = cast(dict[str, object], raw)
    lecture_id = row.get("lectureId")
    if not isinstance(lecture_id, str) or not lecture_id.strip():
        return None
    activity_total = max(0, _coerce_int(row.get("activityTotal", 0), default=0) or 0)
    activity_done = max(0, _coerce_int(row.get("activityDone", 0), default=0) or 0)
    return Lecture(
        lecture_id=lecture_id,
        lecture_name=_coerce_str(row.get("lectureName")),
        watched=_coerce_bool(row.get("watched")),
        memory_note=_coerce_bool(row.get("memoryNote")),
        final_note=_coerce_bool(row.get("finalNote")),
        activity_total=activity_total,
        activity_done=min(activity_done, activity_total),
        revision_count=max(0, _coerce_int(row.get("revisionCount", 0), default=0) or 0),
        notes=_coerce_str(row.get("notes")),
        xp_earned=_coerce_int(row.get("xpEarned", 0), default=0) or 0,
    )


def _assignment_from_document(raw: object) -> Assignment:
    if not isinstance(raw, dict):
        return Assignment()
    row = cast(dict[str, object], raw)
    total = max(0, _coerce_int(row.get("totalQuestions", 0), default=0) or 0)
    done = max(0, _coerce_int(row.get("doneQuestions", 0), default=0) or 0)
    return Assignment(total_questions=total, done_questions=min(done, total))


def _coerce_bool(value: object) -> bool:
    return value if isinstance(value, bool) else False


def _coerce_date(value: object) -> str | None:
    """Return an ISO calendar date, or None when value is not one."""
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        return None


def _coerce_str(value: object) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce value to int for document normalization."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return default
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default
