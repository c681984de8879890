"""
Debounced auto-save for one course data file.

Every schedule_save() cancels the pending timer and bumps the generation. A timer that
survives the quiet period writes only if its generation is still the newest, so a burst
of taps becomes one upload and an older snapshot never lands after a newer one.
"""
import asyncio
import logging

from tracker.attendance import CourseDataset
from tracker.config import SAVE_DEBOUNCE_SECONDS, SAVE_RETRY_DELAY_SECONDS
from tracker.courses import Course
from tracker.errors import AuthorizationExpired, RemoteAuthFailure, TrackerError
from tracker.notices import ERROR, SUCCESS, NoticeBoard
from tracker.repository import CourseRepository

logger = logging.getLogger(__name__)


class SyncPipeline:
    def __init__(
        self,
        repository: CourseRepository,
        course: Course,
        notices: NoticeBoard,
        *,
        debounce: float = SAVE_DEBOUNCE_SECONDS,
        retry_delay: float = SAVE_RETRY_DELAY_SECONDS,
    ):
        self.repository = repository
        self.course = course
        self.notices = notices
        self.debounce = debounce
        self.retry_delay = retry_delay
        self.generation = 0
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._write_lock = asyncio.Lock()

    @property
    def pending(self) -> bool:
        """A save is scheduled but its quiet period has not ended yet."""
        return self._timer is not None and not self._timer.done()

    def schedule_save(self, dataset: CourseDataset) -> int:
        """Must be called from the event loop. Returns the generation of the new save."""
        loop = asyncio.get_running_loop()
        if self.pending:
            self._timer.cancel()
        self.generation += 1
        generation = self.generation
        task = loop.create_task(self._run(generation, dataset))
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return generation

    async def drain(self) -> None:
        """Wait for scheduled and in-flight saves (shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation

    async def _run(self, generation: int, dataset: CourseDataset) -> None:
        await asyncio.sleep(self.debounce)
        if not self._is_current(generation):
            logger.debug("Save %d superseded before it started", generation)
            return
        # Quiet period over: from here on a newer schedule_save no longer cancels this write
        if self._timer is asyncio.current_task():
            self._timer = None
        async with self._write_lock:
            if not self._is_current(generation):
                logger.debug("Save %d superseded while waiting for an earlier write", generation)
                return
            await self._save_with_retry(generation, dataset)

    async def _save_with_retry(self, generation: int, dataset: CourseDataset) -> None:
        try:
            await self.repository.save(self.course, dataset)
        except AuthorizationExpired as e:
            logger.error("Save of %s failed, Dropbox authorization lost: %s", self.course.sis_section_id, e)
            self.notices.post("Dropbox session expired. Reconnect to save.", ERROR)
            return
        except TrackerError as e:
            logger.warning("Save of %s failed: %s", self.course.sis_section_id, e)
            self.notices.post("Save failed - retrying...", ERROR)
            await self._retry(generation, dataset, force_refresh=isinstance(e, RemoteAuthFailure))
            return
        logger.info("Saved %s (generation %d)", self.course.sis_section_id, generation)
        self.notices.post("Saved", SUCCESS)

    async def _retry(self, generation: int, dataset: CourseDataset, force_refresh: bool) -> None:
        await asyncio.sleep(self.retry_delay)
        if not self._is_current(generation):
            logger.debug("Retry of save %d dropped, a newer save is scheduled", generation)
            return
        try:
            await self.repository.save(self.course, dataset, force_refresh=force_refresh)
        except AuthorizationExpired as e:
            logger.error("Retry of %s failed, Dropbox authorization lost: %s", self.course.sis_section_id, e)
            self.notices.post("Dropbox session expired. Reconnect to save.", ERROR)
            return
        except TrackerError as e:
            logger.error("Retry of %s failed: %s", self.course.sis_section_id, e)
            self.notices.post("Save failed! Check connection.", ERROR)
            return
        logger.info("Saved %s on retry (generation %d)", self.course.sis_section_id, generation)
        self.notices.post("Saved (retry)", SUCCESS)
