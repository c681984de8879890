"""
In-memory store for pending authorization flows (state -> code_verifier).
Used between /connect and the redirect back to /. TTL to avoid unbounded growth.
"""
import time
from dataclasses import dataclass

from tracker.config import VERIFIER_TTL_SECONDS


@dataclass
class PendingFlow:
    code_verifier: str
    created_at: float
    ttl: float = VERIFIER_TTL_SECONDS

    def expired(self) -> bool:
        return (time.monotonic() - self.created_at) > self.ttl


class FlowStore:
    """Short-lived verifier storage. Entries are single-use: reading one removes it."""

    def __init__(self, ttl: float = VERIFIER_TTL_SECONDS):
        self.ttl = ttl
        self._pending: dict[str, PendingFlow] = {}

    def store_verifier(self, state: str, code_verifier: str) -> None:
        self._clean_expired()
        self._pending[state] = PendingFlow(code_verifier=code_verifier, created_at=time.monotonic(), ttl=self.ttl)

    def pop_verifier(self, state: str | None) -> str | None:
        if not state:
            return None
        flow = self._pending.pop(state, None)
        if flow is None or flow.expired():
            return None
        return flow.code_verifier

    def __len__(self) -> int:
        return len(self._pending)

    def _clean_expired(self) -> None:
        expired = [s for s, f in self._pending.items() if f.expired()]
        for s in expired:
            del self._pending[s]
