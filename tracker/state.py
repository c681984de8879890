"""
TrackerState: the single owner of the app's mutable state.
Loaded datasets, one save pipeline per data file, the token manager and the latest notice.
All mutations happen on the event loop; no locks needed outside the save pipeline.
"""
import logging
from datetime import date, datetime, timezone
from typing import Callable

import httpx

from tracker.attendance import AttendanceRecord, CourseDataset, record_tap
from tracker.auth import TokenManager
from tracker.config import SAVE_DEBOUNCE_SECONDS, SAVE_RETRY_DELAY_SECONDS
from tracker.courses import Course, load_courses
from tracker.database import SessionLocal
from tracker.dropbox import DropboxStore
from tracker.errors import TrackerError
from tracker.flow_store import FlowStore
from tracker.notices import ERROR, NoticeBoard
from tracker.repository import CourseRepository
from tracker.sync import SyncPipeline
from tracker.token_store import CredentialStore

logger = logging.getLogger(__name__)


def local_today() -> str:
    return date.today().isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TrackerState:
    def __init__(
        self,
        tokens: TokenManager,
        repository: CourseRepository,
        courses: list[Course],
        *,
        http: httpx.AsyncClient | None = None,
        debounce: float = SAVE_DEBOUNCE_SECONDS,
        retry_delay: float = SAVE_RETRY_DELAY_SECONDS,
        today: Callable[[], str] = local_today,
        now: Callable[[], datetime] = utc_now,
    ):
        self.tokens = tokens
        self.repository = repository
        self.courses = courses
        self.http = http
        self.debounce = debounce
        self.retry_delay = retry_delay
        self.today = today
        self.now = now
        self.notices = NoticeBoard()
        # sis_section_id -> dataset (None: no data file in Dropbox at the last lookup)
        self.datasets: dict[str, CourseDataset | None] = {}
        self._pipelines: dict[str, SyncPipeline] = {}

    def course(self, file_id: str) -> Course | None:
        for c in self.courses:
            if c.file_id == file_id:
                return c
        return None

    async def load_course(self, course: Course) -> CourseDataset | None:
        """
        Download the course file once and keep it; later calls return the in-memory copy,
        which may hold edits not saved yet. A course without a data file is looked up again next time.
        """
        dataset = self.datasets.get(course.sis_section_id)
        if dataset is not None:
            return dataset
        try:
            dataset = await self.repository.load(course)
        except TrackerError as e:
            logger.error("Failed to load course %s: %s", course.sis_section_id, e)
            self.notices.post("Failed to load course data", ERROR)
            raise
        self.datasets[course.sis_section_id] = dataset
        return dataset

    def pipeline(self, course: Course) -> SyncPipeline:
        pipeline = self._pipelines.get(course.sis_section_id)
        if pipeline is None:
            pipeline = SyncPipeline(
                self.repository,
                course,
                self.notices,
                debounce=self.debounce,
                retry_delay=self.retry_delay,
            )
            self._pipelines[course.sis_section_id] = pipeline
        return pipeline

    def tap(self, course: Course, dataset: CourseDataset, student_id, mode: str) -> AttendanceRecord:
        """Mark a student in today's session and schedule the debounced save."""
        session = dataset.today_session(self.today())
        record = record_tap(session, student_id, mode, self.now())
        self.pipeline(course).schedule_save(dataset)
        return record

    async def aclose(self) -> None:
        for pipeline in self._pipelines.values():
            await pipeline.drain()
        if self.http is not None:
            await self.http.aclose()


def create_tracker_state(transport: httpx.AsyncBaseTransport | None = None, **kwargs) -> TrackerState:
    """Wire the default collaborators. transport lets tests substitute httpx.MockTransport."""
    http = httpx.AsyncClient(transport=transport)
    tokens = TokenManager(CredentialStore(SessionLocal), FlowStore(), http)
    repository = CourseRepository(tokens, DropboxStore(http))
    return TrackerState(tokens, repository, load_courses(), http=http, **kwargs)
