"""
Pytest configuration for tracker. In-memory SQLite for credentials and a fake Dropbox
served through httpx.MockTransport, so tests never touch the filesystem or the network.
"""
import json
import os
from urllib.parse import parse_qsl

# Must be set before tracker.database is imported; StaticPool shares the in-memory DB
os.environ["TRACKER_DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("TRACKER_COURSES_FILE", None)

import httpx
import pytest

from tracker.database import SessionLocal, init_db
from tracker.token_store import CredentialStore


class FakeDropbox:
    """Token endpoint plus files/download and files/upload, with queued failures."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.uploads: list[dict] = []
        self.token_requests: list[dict] = []
        self.token_queue: list[httpx.Response] = []
        self.upload_failures: list[int] = []
        self.issued = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth2/token":
            return self._token(dict(parse_qsl(request.content.decode())))
        arg = json.loads(request.headers["Dropbox-API-Arg"])
        if request.url.path.endswith("/files/download"):
            if arg["path"] not in self.files:
                return httpx.Response(409, json={"error_summary": "path/not_found/..", "error": {".tag": "path"}})
            return httpx.Response(200, content=self.files[arg["path"]])
        if request.url.path.endswith("/files/upload"):
            if self.upload_failures:
                return httpx.Response(self.upload_failures.pop(0), text="upload failed")
            self.files[arg["path"]] = request.content
            self.uploads.append(
                {
                    "path": arg["path"],
                    "arg": arg,
                    "content": request.content,
                    "authorization": request.headers["Authorization"],
                }
            )
            return httpx.Response(200, json={"path_display": arg["path"]})
        return httpx.Response(404)

    def _token(self, form: dict) -> httpx.Response:
        self.token_requests.append(form)
        if self.token_queue:
            return self.token_queue.pop(0)
        self.issued += 1
        body = {"access_token": f"at-{self.issued}", "token_type": "bearer", "expires_in": 14400}
        if form.get("grant_type") == "authorization_code":
            body["refresh_token"] = "rt-1"
        return httpx.Response(200, json=body)

    def dataset_json(self, path: str) -> dict:
        return json.loads(self.files[path])


@pytest.fixture
def fake_dropbox() -> FakeDropbox:
    return FakeDropbox()


@pytest.fixture
def http(fake_dropbox) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_dropbox))


@pytest.fixture
def credential_store():
    init_db()
    store = CredentialStore(SessionLocal)
    store.clear()
    yield store
    store.clear()
