"""
Latest user-facing notification (save results, load failures). The page polls GET /notices.
"""
import time
from dataclasses import asdict, dataclass

SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class Notice:
    seq: int
    message: str
    kind: str
    created_at: float

    def to_dict(self) -> dict:
        return asdict(self)


class NoticeBoard:
    """Keeps only the newest notice; a new one replaces whatever was showing."""

    def __init__(self):
        self._seq = 0
        self.latest: Notice | None = None

    def post(self, message: str, kind: str = SUCCESS) -> Notice:
        self._seq += 1
        self.latest = Notice(seq=self._seq, message=message, kind=kind, created_at=time.time())
        return self.latest
