"""
Course sections tracked by the app and the Dropbox path of each section's data file.
"""
import json
from dataclasses import asdict, dataclass
from pathlib import Path

from tracker.config import COURSES_FILE, DATA_ROOT


@dataclass(frozen=True)
class Course:
    course_id: int
    tab_label: str
    course_num: str
    file_id: str
    term: str
    sis_section_id: str

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_COURSES = [
    Course(104159, "101H", "101", "101H", "SPR26", "ECON101H.001.SP26"),
    Course(109260, "510-001", "510", "510001", "SPR26", "ECON510.001.SP26"),
    Course(109260, "510-002", "510", "510002", "SPR26", "ECON510.002.SP26"),
]


def load_courses(path: str | None = COURSES_FILE) -> list[Course]:
    """Course list from a JSON array of objects, or the built-in list when path is None."""
    if path is None:
        return list(DEFAULT_COURSES)
    with open(Path(path), encoding="utf-8") as f:
        raw = json.load(f)
    return [
        Course(
            course_id=int(c["course_id"]),
            tab_label=str(c["tab_label"]),
            course_num=str(c["course_num"]),
            file_id=str(c["file_id"]),
            term=str(c["term"]),
            sis_section_id=str(c["sis_section_id"]),
        )
        for c in raw
    ]


def participation_path(course: Course, data_root: str = DATA_ROOT) -> str:
    return f"{data_root}/{course.course_num}/Data/{course.file_id}{course.term}participation.json"
