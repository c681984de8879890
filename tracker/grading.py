"""
Participation points and roster display rules shared with the desktop grading engine.
"""
from tracker.attendance import ABSENT, LATE, AttendanceRecord, CourseDataset, Session, Student
from tracker.config import PAST_SESSIONS_TO_SHOW

NAME_RED = "red"
NAME_MAGENTA = "magenta"
NAME_BLACK = "black"


def session_points(record: AttendanceRecord | None) -> float:
    """Late counts half a point for the first mark; every extra participation is a full point."""
    if record is None or record.status == ABSENT:
        return 0
    if record.status == LATE:
        return 0.5 + (record.count - 1)
    return record.count


def format_points(record: AttendanceRecord | None) -> str:
    pts = session_points(record)
    if pts == int(pts):
        return str(int(pts))
    return f"{pts:.1f}"


def name_color(student_id, active_sessions: list[Session]) -> str:
    """
    red: nothing in each of the last three active sessions.
    magenta: at most one participation in any recent session.
    """
    recent = active_sessions[-3:]
    counts = [s.record_for(student_id).count for s in recent]
    if len(counts) == 3 and all(c == 0 for c in counts):
        return NAME_RED
    if counts and max(counts) <= 1:
        return NAME_MAGENTA
    return NAME_BLACK


def display_name(student: Student, row_num: int, total_students: int) -> str:
    prefix = str(row_num).zfill(len(str(total_students)))
    name = f"{prefix}-{total_students} {student.name}"
    if student.note:
        name += f" ({student.note})"
    return name


def roster(dataset: CourseDataset) -> list[Student]:
    return sorted(dataset.students, key=lambda s: s.name.lower())


def grid_dates(dataset: CourseDataset, today: str, past: int = PAST_SESSIONS_TO_SHOW) -> list[str]:
    """Most recent active session dates before today (oldest first), then today."""
    past_dates = sorted((s.date for s in dataset.active_sessions() if s.date < today), reverse=True)[:past]
    return list(reversed(past_dates)) + [today]
