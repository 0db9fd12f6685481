import os
import json
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel, Field, ValidationError
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException

from events import STREAM_HEADERS, event_stream
from hub import Hub
from schemas import Announcement, AttendanceEvent, AttendanceReport, Event, SharedFile, User, WireModel
from store import REPORT_TEACHER_ID, Store

logger = logging.getLogger(__name__)

# Config
PORT = int(os.getenv("PORT", 8080))
HOST = os.getenv("HOST", "0.0.0.0")
SEED_CLASSES = [c.strip() for c in os.getenv("SEED_CLASSES", "L3,M1").split(",") if c.strip()]
EXPECTED_HOURS = int(os.getenv("EXPECTED_HOURS", 6))
EVENTS_KEEPALIVE_SECONDS = float(os.getenv("EVENTS_KEEPALIVE_SECONDS", 15))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}
ID_FORMAT = "%Y%m%d%H%M%S"


class CORSHeadersMiddleware:
    """Adds the CORS headers to every response and answers OPTIONS itself."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        if scope["method"] == "OPTIONS":
            response = Response(status_code=204, headers=CORS_HEADERS)
            await response(scope, receive, send)
            return

        async def send_with_cors(message):
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.update(CORS_HEADERS)
            await send(message)

        await self.app(scope, receive, send_with_cors)


def now() -> datetime:
    return datetime.now().astimezone()


# Dependencies
def get_store(request: Request) -> Store:
    return request.app.state.store


def get_hub(request: Request) -> Hub:
    return request.app.state.hub


def publish(hub: Hub, kind: str, record: WireModel) -> None:
    event = Event(type=kind, payload=record.to_wire())
    hub.broadcast(event.to_wire())


def json_body(model, lenient: bool = False):
    """Parse the request body as JSON into *model* whatever its Content-Type.

    With *lenient*, an unreadable body yields the model's defaults instead
    of a 400.
    """

    async def parse(request: Request):
        raw = await request.body()
        try:
            return model.model_validate(json.loads(raw) if raw else {})
        except (ValueError, ValidationError):
            if lenient:
                return model()
            raise HTTPException(status_code=400, detail="invalid payload")

    return parse


# Schemas for requests
class LoginBody(BaseModel):
    email: Optional[str] = None


class AttendanceBody(BaseModel):
    teacher_id: str = Field("", alias="teacherId")
    type: str


class FileBody(BaseModel):
    teacher_id: str = Field("", alias="teacherId")
    name: str = ""
    url: str = ""


class AnnouncementBody(BaseModel):
    message: str = ""


router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


# Auth
@router.post("/api/auth/login", response_model=User)
def login(body: LoginBody = Depends(json_body(LoginBody, lenient=True))):
    email = (body.email or "").lower()
    if "admin" in email:
        return User(id="admin-1", email=email, role="admin", classes=[])
    if "prof" in email or "teacher" in email:
        return User(id="teacher-1", email=email, role="teacher", classes=["L3"])
    return User(id="student-1", email=email, role="student", classes=["L3"])


# Attendance
@router.post("/api/attendance/check", response_model=AttendanceEvent)
def check_attendance(
    body: AttendanceBody = Depends(json_body(AttendanceBody)),
    store: Store = Depends(get_store),
    hub: Hub = Depends(get_hub),
):
    if body.type not in ("start", "end"):
        raise HTTPException(status_code=400, detail="invalid payload")
    ev = store.append_attendance(AttendanceEvent(teacher_id=body.teacher_id, type=body.type, at=now()))
    logger.info("attendance %s recorded for %s", ev.type, ev.teacher_id)
    publish(hub, "attendance", ev)
    return ev


@router.get("/api/admin/attendance/report", response_model=AttendanceReport)
def attendance_report(store: Store = Depends(get_store)):
    return store.attendance_report(REPORT_TEACHER_ID)


# Class files
@router.get("/api/classes/{class_id}/files", response_model=List[SharedFile])
def list_class_files(class_id: str, store: Store = Depends(get_store)):
    files = store.list_files(class_id)
    # newest first; ties keep the later upload ahead
    return sorted(reversed(files), key=lambda f: f.at, reverse=True)


@router.post("/api/classes/{class_id}/files", response_model=SharedFile)
def upload_class_file(
    class_id: str,
    body: FileBody = Depends(json_body(FileBody)),
    store: Store = Depends(get_store),
    hub: Hub = Depends(get_hub),
):
    if not body.name:
        raise HTTPException(status_code=400, detail="invalid payload")
    at = now()
    file = SharedFile(
        id=at.strftime(ID_FORMAT),
        class_id=class_id,
        teacher_id=body.teacher_id,
        name=body.name,
        url=body.url,
        at=at,
    )
    store.append_file(class_id, file)
    logger.info("file %s shared in class %s", file.name, class_id)
    publish(hub, "file_uploaded", file)
    return file


# Announcements
@router.post("/api/admin/announcements", response_model=Announcement)
def post_announcement(
    body: AnnouncementBody = Depends(json_body(AnnouncementBody)),
    store: Store = Depends(get_store),
    hub: Hub = Depends(get_hub),
):
    if not body.message:
        raise HTTPException(status_code=400, detail="invalid payload")
    at = now()
    a = store.prepend_announcement(Announcement(id=at.strftime(ID_FORMAT), message=body.message, at=at))
    logger.info("announcement %s posted", a.id)
    publish(hub, "announcement", a)
    return a


@router.get("/api/announcements", response_model=List[Announcement])
def list_announcements(store: Store = Depends(get_store)):
    return store.list_announcements()


# Push stream
@router.get("/events")
async def events(request: Request):
    state = request.app.state
    return StreamingResponse(event_stream(request, state.hub, state.keepalive), headers=STREAM_HEADERS)


# Errors
async def http_error(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))


def create_app(store: Optional[Store] = None, hub: Optional[Hub] = None, keepalive: Optional[float] = None) -> FastAPI:
    app = FastAPI(title="Classroom Backend", redirect_slashes=False)
    app.state.store = store if store is not None else Store(
        classes=SEED_CLASSES, timetable={REPORT_TEACHER_ID: EXPECTED_HOURS}
    )
    app.state.hub = hub if hub is not None else Hub()
    app.state.keepalive = EVENTS_KEEPALIVE_SECONDS if keepalive is None else keepalive
    app.add_exception_handler(StarletteHTTPException, http_error)
    app.add_middleware(CORSHeadersMiddleware)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("backend running on :%d", PORT)
    uvicorn.run(app, host=HOST, port=PORT)
