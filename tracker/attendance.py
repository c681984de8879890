"""
Attendance data model and tap state machine.

A course dataset is the JSON file shared with the desktop participation tool:
{"students": [...], "sessions": [{"date", "start_time", "active", "processed", "records"}]}.
Keys this module does not know about are carried through untouched.
"""
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from tracker.config import GRACE_MINUTES

ABSENT = "absent"
PRESENT = "present"
LATE = "late"
STATUSES = (ABSENT, PRESENT, LATE)

MODE_PRESENT = "present"
MODE_LATE = "late"
MODE_UNDO = "undo"
MODES = (MODE_PRESENT, MODE_LATE, MODE_UNDO)

GRACE_SECONDS = GRACE_MINUTES * 60


@dataclass(frozen=True)
class AttendanceRecord:
    status: str = ABSENT
    count: int = 0

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValueError(f"Unknown attendance status: {self.status!r}")
        if self.count < 0:
            raise ValueError("Attendance count cannot be negative")
        if (self.status == ABSENT) != (self.count == 0):
            raise ValueError(f"Inconsistent attendance record: {self.status}/{self.count}")

    @property
    def is_empty(self) -> bool:
        return self.status == ABSENT and self.count == 0

    @classmethod
    def from_dict(cls, data: dict) -> "AttendanceRecord":
        """Records edited by hand may be inconsistent: count 0 reads as absent, absent with a count as present."""
        status = data.get("status", ABSENT)
        count = int(data.get("count", 0))
        if count <= 0:
            return cls()
        if status == ABSENT:
            status = PRESENT
        return cls(status=status, count=count)

    def to_dict(self) -> dict:
        return {"status": self.status, "count": self.count}


def effective_mode(record: AttendanceRecord, mode: str, elapsed_seconds: float | None) -> str:
    """Present taps on an absent student past the grace period count as late."""
    if mode == MODE_PRESENT and record.status == ABSENT and elapsed_seconds is not None and elapsed_seconds > GRACE_SECONDS:
        return MODE_LATE
    return mode


def transition(record: AttendanceRecord, mode: str, elapsed_seconds: float | None) -> AttendanceRecord:
    """
    Apply one tap to a record and return the new record.
    present: absent -> present/1, otherwise count + 1.
    late: absent -> late/1, otherwise status becomes late, count kept.
    undo: count - 1; reaching 0 makes the record absent; absent/0 is unchanged.
    """
    mode = effective_mode(record, mode, elapsed_seconds)
    if mode == MODE_PRESENT:
        if record.status == ABSENT:
            return AttendanceRecord(PRESENT, 1)
        return replace(record, count=record.count + 1)
    if mode == MODE_LATE:
        if record.status == ABSENT:
            return AttendanceRecord(LATE, 1)
        return replace(record, status=LATE)
    if mode == MODE_UNDO:
        if record.count > 1:
            return replace(record, count=record.count - 1)
        if record.count == 1:
            return AttendanceRecord(ABSENT, 0)
        return record
    raise ValueError(f"Unknown tap mode: {mode!r}")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        # Naive timestamps from the desktop tool are local time
        dt = dt.astimezone()
    return dt


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Student:
    id: int | str
    name: str
    level: str | None = None
    major: str | None = None
    note: str | None = None
    extra: dict = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Records are keyed by the string form of the student id."""
        return str(self.id)

    @classmethod
    def from_dict(cls, data: dict) -> "Student":
        known = {"id", "name", "level", "major", "note"}
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            level=data.get("level"),
            major=data.get("major"),
            note=data.get("note"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "major": self.major,
            "note": self.note,
        }


@dataclass
class Session:
    date: str
    start_time: datetime | None = None
    active: bool = True
    processed: bool = False
    records: dict[str, AttendanceRecord] = field(default_factory=dict)
    extra: dict = field(default_factory=dict)

    def record_for(self, student_id) -> AttendanceRecord:
        return self.records.get(str(student_id), AttendanceRecord())

    @property
    def is_empty(self) -> bool:
        """No student has anything other than absent/0."""
        return all(r.is_empty for r in self.records.values())

    def elapsed_seconds(self, now: datetime) -> float | None:
        if self.start_time is None:
            return None
        return (now - self.start_time).total_seconds()

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        known = {"date", "start_time", "active", "processed", "records"}
        return cls(
            date=data["date"],
            start_time=parse_timestamp(data.get("start_time")),
            active=bool(data.get("active", True)),
            processed=bool(data.get("processed", False)),
            records={str(k): AttendanceRecord.from_dict(v) for k, v in (data.get("records") or {}).items()},
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "date": self.date,
            "start_time": format_timestamp(self.start_time) if self.start_time else None,
            "active": self.active,
            "processed": self.processed,
            "records": {k: r.to_dict() for k, r in self.records.items()},
        }


def record_tap(session: Session, student_id, mode: str, now: datetime | None = None) -> AttendanceRecord:
    """
    Handle a tap on a student's cell in the given session and return the stored record.
    The first tap of the session stamps start_time; it is never changed afterwards.
    """
    if mode not in MODES:
        raise ValueError(f"Unknown tap mode: {mode!r}")
    now = now or datetime.now(timezone.utc)
    if session.start_time is None:
        session.start_time = now
    key = str(student_id)
    record = transition(session.records.get(key, AttendanceRecord()), mode, session.elapsed_seconds(now))
    session.records[key] = record
    return record


@dataclass
class CourseDataset:
    students: list[Student] = field(default_factory=list)
    sessions: list[Session] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    def session_for(self, date: str) -> Session | None:
        for s in self.sessions:
            if s.date == date:
                return s
        return None

    def today_session(self, date: str) -> Session:
        """Session for date, created (active, no start_time) on first use."""
        session = self.session_for(date)
        if session is None:
            session = Session(date=date)
            self.sessions.append(session)
            self.sessions.sort(key=lambda s: s.date)
        return session

    def student(self, student_id) -> Student | None:
        key = str(student_id)
        for st in self.students:
            if st.key == key:
                return st
        return None

    def active_sessions(self) -> list[Session]:
        return sorted((s for s in self.sessions if s.active), key=lambda s: s.date)

    def normalized(self) -> "CourseDataset":
        """Copy without sessions that hold nothing but absent/0 records. self is not modified."""
        return CourseDataset(
            students=self.students,
            sessions=[s for s in self.sessions if not s.is_empty],
            extra=self.extra,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "CourseDataset":
        sessions: list[Session] = []
        seen: set[str] = set()
        for raw in data.get("sessions") or []:
            session = Session.from_dict(raw)
            # At most one session per date; first one wins
            if session.date in seen:
                continue
            seen.add(session.date)
            sessions.append(session)
        return cls(
            students=[Student.from_dict(s) for s in data.get("students") or []],
            sessions=sessions,
            extra={k: v for k, v in data.items() if k not in ("students", "sessions")},
        )

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "students": [s.to_dict() for s in self.students],
            "sessions": [s.to_dict() for s in self.sessions],
        }

    @classmethod
    def from_json(cls, content: bytes | str) -> "CourseDataset":
        return cls.from_dict(json.loads(content))

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
