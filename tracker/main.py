"""
Participation Tracker web app.
Dropbox PKCE login on GET / and /connect; course grids and taps as JSON for the touch UI.
Port 8000; REDIRECT_URI must point back at GET /.
"""
import html
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel

from tracker.attendance import CourseDataset, GRACE_SECONDS, Session
from tracker.config import LOG_LEVEL
from tracker.courses import Course
from tracker.database import init_db
from tracker.errors import AuthorizationExpired, MissingVerifier, TokenRequestError, TrackerError
from tracker.grading import display_name, format_points, grid_dates, name_color, roster
from tracker.state import TrackerState, create_tracker_state

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the credentials table and wire the tracker state; flush pending saves on shutdown."""
    init_db()
    app.state.tracker = create_tracker_state()
    yield
    await app.state.tracker.aclose()


app = FastAPI(title="Participation Tracker", version="0.1.0", lifespan=lifespan)


class TapRequest(BaseModel):
    student_id: int | str
    mode: Literal["present", "late", "undo"]


def get_tracker(request: Request) -> TrackerState:
    return request.app.state.tracker


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  {body}
</body>
</html>""",
        status_code=status_code,
    )


def _not_connected() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": "not_connected", "error_description": "Connect to Dropbox first"},
    )


def _timer_state(session: Session | None, now: datetime) -> dict:
    elapsed = session.elapsed_seconds(now) if session else None
    return {
        "started": elapsed is not None,
        "elapsed_seconds": elapsed,
        "grace_seconds": GRACE_SECONDS,
        "over_grace": elapsed is not None and elapsed > GRACE_SECONDS,
    }


def _get_course(tracker: TrackerState, file_id: str) -> Course:
    course = tracker.course(file_id)
    if course is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "unknown_course", "error_description": f"No course with file id {file_id}"},
        )
    return course


async def _load(tracker: TrackerState, course: Course) -> CourseDataset | None:
    try:
        return await tracker.load_course(course)
    except AuthorizationExpired:
        raise _not_connected()
    except TrackerError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": "load_failed", "error_description": str(e)},
        )


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "tracker"}


@app.get("/", response_class=HTMLResponse)
async def home(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """
    Entry point and OAuth redirect target. With ?code=... completes the exchange and
    redirects to / so a reload does not repeat it; otherwise restores or refreshes the session.
    """
    tracker = get_tracker(request)

    if error:
        tracker.tokens.flows.pop_verifier(state)
        msg = html.escape(error_description or error)
        return _page("Dropbox connection failed", f'<p>{msg}</p>\n  <p><a href="/connect">Try again</a></p>', 400)

    try:
        authenticated = await tracker.tokens.initialize(code=code, state=state)
    except (MissingVerifier, TokenRequestError) as e:
        return _page(
            "Dropbox connection failed",
            f'<p>{html.escape(str(e))}</p>\n  <p><a href="/connect">Reconnect</a></p>',
            400,
        )

    if code:
        return RedirectResponse(url="/", status_code=303)

    if not authenticated:
        return _page(
            "Participation Tracker",
            '<p>Not connected.</p>\n  <p><a href="/connect">Connect to Dropbox</a></p>',
        )

    items = "".join(
        f'<li><a href="/courses/{html.escape(c.file_id)}">{html.escape(c.tab_label)}</a></li>'
        for c in tracker.courses
    )
    return _page("Participation Tracker", f"<ul>{items}</ul>")


@app.get("/connect")
def connect(request: Request):
    """Store a PKCE verifier for this flow and redirect to Dropbox."""
    url = get_tracker(request).tokens.start_authorization()
    return RedirectResponse(url=url, status_code=302)


@app.post("/disconnect")
def disconnect(request: Request):
    get_tracker(request).tokens.disconnect()
    return {"status": "disconnected"}


@app.get("/courses")
def list_courses(request: Request):
    tracker = get_tracker(request)
    return [{**c.to_dict(), "path": tracker.repository.path_for(c)} for c in tracker.courses]


@app.get("/courses/{file_id}")
async def course_grid(request: Request, file_id: str):
    """Grid for one section: recent session columns plus today, one row per student."""
    tracker = get_tracker(request)
    course = _get_course(tracker, file_id)
    dataset = await _load(tracker, course)
    if dataset is None:
        return {"course": course.to_dict(), "found": False, "dates": [], "students": [], "timer": _timer_state(None, tracker.now())}

    today = tracker.today()
    dates = grid_dates(dataset, today)
    active = dataset.active_sessions()
    students = roster(dataset)
    sessions = {d: dataset.session_for(d) for d in dates}
    rows = []
    for idx, student in enumerate(students):
        cells = []
        for d in dates:
            record = sessions[d].record_for(student.key) if sessions[d] else None
            cells.append(
                {
                    "date": d,
                    "status": record.status if record else "absent",
                    "count": record.count if record else 0,
                    "points": format_points(record),
                    "editable": d == today,
                }
            )
        rows.append(
            {
                "id": student.id,
                "display_name": display_name(student, idx + 1, len(students)),
                "name_color": name_color(student.key, active),
                "level": student.level or "---",
                "major": student.major or "---",
                "cells": cells,
            }
        )
    return {
        "course": course.to_dict(),
        "found": True,
        "today": today,
        "dates": dates,
        "students": rows,
        "timer": _timer_state(sessions[today], tracker.now()),
    }


@app.post("/courses/{file_id}/tap")
async def tap(request: Request, file_id: str, body: TapRequest):
    """Apply one tap to today's cell for a student and schedule the auto-save."""
    tracker = get_tracker(request)
    course = _get_course(tracker, file_id)
    dataset = await _load(tracker, course)
    if dataset is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "no_data_file", "error_description": "No data file found for this course."},
        )
    student = dataset.student(body.student_id)
    if student is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "unknown_student", "error_description": f"No student {body.student_id}"},
        )

    record = tracker.tap(course, dataset, student.key, body.mode)
    today = tracker.today()
    return {
        "student_id": student.id,
        "date": today,
        "status": record.status,
        "count": record.count,
        "points": format_points(record),
        "name_color": name_color(student.key, dataset.active_sessions()),
        "timer": _timer_state(dataset.session_for(today), tracker.now()),
        "generation": tracker.pipeline(course).generation,
    }


@app.get("/notices")
def notices(request: Request):
    latest = get_tracker(request).notices.latest
    return {"notice": latest.to_dict() if latest else None}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(
        "tracker.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
