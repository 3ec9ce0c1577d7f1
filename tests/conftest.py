import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import mongomock
import pytest
from jose import jwt

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth import Identity
from config import Settings
from database import Database
from events import EventService
from mailer import MailDeliveryError
from participation import ParticipationService
from schemas import EVENT_DATE_FORMAT, EventDraft

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
SECRET = "tests-secret-key"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingMailer:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()

    def send(self, recipient, subject, body):
        if recipient in self.fail_for:
            raise MailDeliveryError(f"Failed to send email to {recipient}")
        with self._lock:
            self.sent.append((recipient, subject, body))

    @property
    def recipients(self):
        return sorted(recipient for recipient, _, _ in self.sent)


def event_date(days: int = 0, hours: int = 0) -> str:
    return (NOW + timedelta(days=days, hours=hours)).strftime(EVENT_DATE_FORMAT)


def make_draft(**overrides) -> EventDraft:
    data = {
        "title": "Sunrise Ridge Hike",
        "description": "An Easy Loop with great views",
        "categories": [{"name": "Day Hike", "difficulty": "easy"}],
        "location": "North Trailhead",
        "event_date": event_date(days=7),
        "event_time": "06:30",
        "max_participants": 10,
    }
    data.update(overrides)
    return EventDraft(**data)


def insert_event(database: Database, date: str, status: str = "active", **fields) -> str:
    doc = {
        "organizer_id": "organizer-1",
        "title": "Stored event",
        "description": "",
        "categories": [],
        "header_image_url": None,
        "location": "Somewhere",
        "event_date": date,
        "event_time": "08:00",
        "max_participants": None,
        "status": status,
        "search_text": "stored event ",
        "participant_count": 0,
    }
    doc.update(fields)
    return database.create_document("events", doc)


def make_token(sub: str, email=None, groups=(), **claims) -> str:
    payload = {"sub": sub, "email": email or f"{sub}@example.com", "email_verified": True}
    if groups:
        payload["cognito:groups"] = list(groups)
    payload.update(claims)
    return jwt.encode(payload, SECRET, algorithm="HS256")


def auth_header(sub: str, **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **kwargs)}"}


ORGANIZER = Identity(user_id="organizer-1", email="organizer-1@example.com")
HIKER = Identity(user_id="hiker-1", email="hiker-1@example.com")
STRANGER = Identity(user_id="stranger-1", email="stranger-1@example.com")
ADMIN = Identity(user_id="admin-1", email="admin-1@example.com", groups=("Admin",), is_admin=True)


@pytest.fixture()
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture()
def database(clock) -> Database:
    db = Database(mongomock.MongoClient()["trailhead-tests"], clock=clock)
    db.ensure_indexes()
    return db


@pytest.fixture()
def settings() -> Settings:
    return Settings(jwt_key=SECRET, send_emails=False)


@pytest.fixture()
def event_service(database, clock) -> EventService:
    return EventService(database, page_size=20, clock=clock)


@pytest.fixture()
def participation_service(database, clock) -> ParticipationService:
    return ParticipationService(database, clock=clock)


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()
