"""
Load and save course datasets in Dropbox.
"""
import logging

from tracker.attendance import CourseDataset
from tracker.auth import TokenManager
from tracker.config import DATA_ROOT
from tracker.courses import Course, participation_path
from tracker.dropbox import DropboxStore
from tracker.errors import InvalidDataFile, RemoteNotFound

logger = logging.getLogger(__name__)


class CourseRepository:
    def __init__(self, tokens: TokenManager, remote: DropboxStore, data_root: str = DATA_ROOT):
        self.tokens = tokens
        self.remote = remote
        self.data_root = data_root

    def path_for(self, course: Course) -> str:
        return participation_path(course, self.data_root)

    async def load(self, course: Course) -> CourseDataset | None:
        """Parsed dataset, or None when the course has no data file yet. A malformed file raises InvalidDataFile."""
        path = self.path_for(course)
        access_token = await self.tokens.ensure_fresh_credential()
        try:
            content = await self.remote.download(path, access_token)
        except RemoteNotFound:
            logger.warning("File not found: %s", path)
            return None
        try:
            return CourseDataset.from_json(content)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise InvalidDataFile(f"Invalid data file {path}: {e}", path=path) from e

    async def save(self, course: Course, dataset: CourseDataset, force_refresh: bool = False) -> None:
        """Overwrite the course file with the dataset, minus sessions where nobody was marked."""
        path = self.path_for(course)
        access_token = await self.tokens.ensure_fresh_credential(force_refresh=force_refresh)
        await self.remote.upload(path, dataset.normalized().to_json(), access_token)
