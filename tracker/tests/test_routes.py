"""Tests for tracker routes: Dropbox connect flow, course grid, taps and notices."""
import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from tracker.auth import now_ms
from tracker.courses import DEFAULT_COURSES, participation_path
from tracker.main import app
from tracker.state import create_tracker_state
from tracker.token_store import EXPIRY_KEY, REFRESH_KEY, TOKEN_KEY

TODAY = "2026-10-18"
COURSE = DEFAULT_COURSES[0]
PATH = participation_path(COURSE)

DATASET = {
    "students": [
        {"id": 2002, "name": "grace Hopper", "level": "JR", "major": "CS", "note": None},
        {"id": 1001, "name": "Ada Lovelace", "level": None, "major": "MATH", "note": "auditing"},
    ],
    "sessions": [
        {
            "date": "2026-10-16",
            "start_time": "2026-10-16T13:00:00.000Z",
            "active": True,
            "processed": False,
            "records": {"1001": {"status": "late", "count": 2}, "2002": {"status": "absent", "count": 0}},
        }
    ],
}


@pytest.fixture
def client(fake_dropbox, credential_store):
    with TestClient(app) as c:
        app.state.tracker = create_tracker_state(
            transport=httpx.MockTransport(fake_dropbox),
            debounce=0.01,
            retry_delay=0.01,
            today=lambda: TODAY,
        )
        yield c


@pytest.fixture
def connected(credential_store):
    credential_store.set(TOKEN_KEY, "at")
    credential_store.set(REFRESH_KEY, "rt")
    credential_store.set(EXPIRY_KEY, str(now_ms() + 14_400_000))
    return credential_store


def _wait_for_upload(fake_dropbox, predicate, timeout=2.0) -> dict:
    """Latest uploaded dataset once it satisfies predicate (saves run on the app's event loop)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if fake_dropbox.uploads:
            saved = json.loads(fake_dropbox.uploads[-1]["content"])
            if predicate(saved):
                return saved
        time.sleep(0.02)
    pytest.fail("expected dataset was not uploaded")


def _today(saved: dict) -> dict | None:
    for s in saved["sessions"]:
        if s["date"] == TODAY:
            return s
    return None


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "tracker"


def test_home_not_connected_links_to_connect(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "/connect" in r.text


def test_connect_redirects_to_dropbox(client):
    r = client.get("/connect", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith("https://www.dropbox.com/oauth2/authorize?")
    assert "code_challenge_method=S256" in location
    assert "token_access_type=offline" in location
    assert "state=" in location


def test_callback_exchanges_code_and_strips_it(client, fake_dropbox, credential_store):
    location = client.get("/connect", follow_redirects=False).headers["location"]
    state = parse_qs(urlparse(location).query)["state"][0]

    r = client.get("/", params={"code": "auth-code", "state": state}, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/"
    assert credential_store.get(TOKEN_KEY) == "at-1"
    assert fake_dropbox.token_requests[0]["code"] == "auth-code"

    home = client.get("/")
    assert home.status_code == 200
    assert "101H" in home.text and "510-002" in home.text


def test_callback_unknown_state_asks_to_reconnect(client, fake_dropbox):
    r = client.get("/", params={"code": "auth-code", "state": "other-tab"}, follow_redirects=False)
    assert r.status_code == 400
    assert "Reconnect" in r.text
    assert fake_dropbox.token_requests == []


def test_callback_error_from_dropbox(client):
    r = client.get("/", params={"error": "access_denied", "error_description": "User denied"})
    assert r.status_code == 400
    assert "User denied" in r.text


def test_home_refreshes_expired_token(client, credential_store, fake_dropbox):
    credential_store.set(TOKEN_KEY, "old")
    credential_store.set(REFRESH_KEY, "rt")
    credential_store.set(EXPIRY_KEY, str(now_ms() - 1000))
    r = client.get("/")
    assert "101H" in r.text
    assert fake_dropbox.token_requests[0]["grant_type"] == "refresh_token"


def test_home_refresh_failure_clears_and_asks_to_connect(client, credential_store, fake_dropbox):
    credential_store.set(TOKEN_KEY, "old")
    credential_store.set(REFRESH_KEY, "revoked")
    credential_store.set(EXPIRY_KEY, str(now_ms() - 1000))
    fake_dropbox.token_queue.append(httpx.Response(400, json={"error": "invalid_grant"}))
    r = client.get("/")
    assert "/connect" in r.text
    assert credential_store.get(REFRESH_KEY) is None


def test_list_courses(client):
    r = client.get("/courses")
    assert r.status_code == 200
    assert r.json()[0]["path"] == PATH


def test_course_grid_requires_connection(client):
    r = client.get(f"/courses/{COURSE.file_id}")
    assert r.status_code == 401
    assert r.json()["detail"]["error"] == "not_connected"


def test_unknown_course(client, connected):
    assert client.get("/courses/nope").status_code == 404


def test_course_grid_without_data_file(client, connected):
    r = client.get(f"/courses/{COURSE.file_id}")
    assert r.status_code == 200
    assert r.json()["found"] is False


def test_course_grid(client, connected, fake_dropbox):
    fake_dropbox.files[PATH] = json.dumps(DATASET).encode()
    r = client.get(f"/courses/{COURSE.file_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["dates"] == ["2026-10-16", TODAY]
    ada, grace = body["students"]
    assert ada["display_name"] == "1-2 Ada Lovelace (auditing)"
    assert ada["level"] == "---"
    assert ada["cells"][0]["points"] == "1.5"
    assert ada["cells"][1] == {"date": TODAY, "status": "absent", "count": 0, "points": "0", "editable": True}
    assert grace["display_name"] == "2-2 grace Hopper"
    assert grace["name_color"] == "magenta"
    assert body["timer"]["started"] is False


def test_tap_updates_record_and_saves(client, connected, fake_dropbox):
    fake_dropbox.files[PATH] = json.dumps(DATASET).encode()
    url = f"/courses/{COURSE.file_id}/tap"

    r1 = client.post(url, json={"student_id": 2002, "mode": "present"})
    r2 = client.post(url, json={"student_id": "2002", "mode": "present"})
    r3 = client.post(url, json={"student_id": 1001, "mode": "late"})

    assert r1.status_code == 200
    assert (r1.json()["status"], r1.json()["count"]) == ("present", 1)
    assert (r2.json()["status"], r2.json()["count"]) == ("present", 2)
    assert (r3.json()["status"], r3.json()["points"]) == ("late", "0.5")
    assert r3.json()["timer"]["started"] is True

    saved = _wait_for_upload(fake_dropbox, lambda d: _today(d) is not None and len(_today(d)["records"]) == 2)
    today = _today(saved)
    assert today["records"]["2002"] == {"status": "present", "count": 2}
    assert today["records"]["1001"] == {"status": "late", "count": 1}
    assert today["start_time"].endswith("Z")
    assert fake_dropbox.uploads[-1]["arg"]["mode"] == "overwrite"


def test_undo_back_to_absent_drops_today_from_file(client, connected, fake_dropbox):
    fake_dropbox.files[PATH] = json.dumps(DATASET).encode()
    url = f"/courses/{COURSE.file_id}/tap"
    client.post(url, json={"student_id": 2002, "mode": "present"})
    r = client.post(url, json={"student_id": 2002, "mode": "undo"})
    assert (r.json()["status"], r.json()["count"]) == ("absent", 0)

    saved = _wait_for_upload(fake_dropbox, lambda d: _today(d) is None)
    assert [s["date"] for s in saved["sessions"]] == ["2026-10-16"]


def test_tap_rejections(client, connected, fake_dropbox):
    url = f"/courses/{COURSE.file_id}/tap"
    assert client.post(url, json={"student_id": 1001, "mode": "present"}).status_code == 404  # no data file

    # a course without a data file is looked up again once the file exists
    fake_dropbox.files[PATH] = json.dumps(DATASET).encode()
    assert client.post(url, json={"student_id": 9999, "mode": "present"}).status_code == 404
    assert client.post(url, json={"student_id": 1001, "mode": "excused"}).status_code == 422
    assert client.post("/courses/nope/tap", json={"student_id": 1001, "mode": "present"}).status_code == 404


def test_revisiting_course_keeps_unsaved_taps(client, connected, fake_dropbox):
    client.app.state.tracker.debounce = 0.3
    fake_dropbox.files[PATH] = json.dumps(DATASET).encode()
    url = f"/courses/{COURSE.file_id}/tap"

    client.post(url, json={"student_id": 1001, "mode": "present"})
    # the file in Dropbox is older than the in-memory copy while the save is pending
    grid = client.get(f"/courses/{COURSE.file_id}", params={"reload": True})
    ada = grid.json()["students"][0]
    assert ada["cells"][-1]["count"] == 1
    client.post(url, json={"student_id": 2002, "mode": "present"})

    saved = _wait_for_upload(fake_dropbox, lambda d: _today(d) is not None and len(_today(d)["records"]) == 2)
    assert _today(saved)["records"] == {
        "1001": {"status": "present", "count": 1},
        "2002": {"status": "present", "count": 1},
    }


@pytest.mark.parametrize(
    "content",
    [
        json.dumps({**DATASET, "sessions": [{**DATASET["sessions"][0], "start_time": "garbage"}]}).encode(),
        json.dumps({"students": [], "sessions": [{"records": {}}]}).encode(),
        b"{not json",
    ],
)
def test_unreadable_data_file_is_load_failed(client, connected, fake_dropbox, content):
    fake_dropbox.files[PATH] = content

    r = client.get(f"/courses/{COURSE.file_id}")
    assert r.status_code == 502
    assert r.json()["detail"]["error"] == "load_failed"
    notice = client.get("/notices").json()["notice"]
    assert notice["message"] == "Failed to load course data"
    assert notice["kind"] == "error"

    tap = client.post(f"/courses/{COURSE.file_id}/tap", json={"student_id": 1001, "mode": "present"})
    assert tap.status_code == 502
    assert fake_dropbox.uploads == []


def test_notices_empty(client):
    assert client.get("/notices").json() == {"notice": None}


def test_disconnect(client, connected):
    r = client.post("/disconnect")
    assert r.json() == {"status": "disconnected"}
    assert connected.get(TOKEN_KEY) is None
    assert client.get(f"/courses/{COURSE.file_id}").status_code == 401
