"""
Database Schemas for the hiking events service

Each Pydantic model describes a MongoDB document (events, participants,
users) or a request body that feeds one. Event dates are stored as
normalized UTC ISO-8601 strings so they sort and compare as text.
"""
from datetime import date, datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

EVENT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

EventStatus = Literal["active", "cancelled", "completed"]
RegistrationStatus = Literal["registered", "cancelled"]
Difficulty = Literal["easy", "moderate", "difficult"]
CategoryName = Literal[
    "Day Hike",
    "Backpacking",
    "Overnight",
    "Climbing",
    "Swimming",
    "Trail Run",
    "Run",
    "Mountain Bike",
]


def is_date_only(value) -> bool:
    if isinstance(value, str):
        return len(value.strip()) == 10
    return isinstance(value, date) and not isinstance(value, datetime)


def normalize_event_date(value) -> str:
    """Return `value` as a `YYYY-MM-DDTHH:MM:SSZ` string; naive inputs are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text[-1:] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError("event date must be an ISO-8601 date or datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime(EVENT_DATE_FORMAT)


class Category(BaseModel):
    name: CategoryName = Field(..., description="Activity type")
    difficulty: Difficulty = Field(..., description="easy|moderate|difficult")


class EventDraft(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200, description="Public event title")
    description: str = Field("", max_length=5000, description="Event details")
    categories: List[Category] = Field(default_factory=list)
    header_image_url: Optional[str] = Field(None, description="Key of the uploaded header image")
    location: str = Field(..., min_length=1, description="Trailhead or meeting point")
    event_date: str = Field(..., description="Event date (UTC)")
    event_time: str = Field("", description="Start time as shown to participants")
    max_participants: Optional[int] = Field(None, ge=1, description="Max participants allowed")

    @field_validator("event_date", mode="before")
    @classmethod
    def _normalize_date(cls, value):
        return normalize_event_date(value)


class EventUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    categories: Optional[List[Category]] = None
    header_image_url: Optional[str] = None
    location: Optional[str] = Field(None, min_length=1)
    event_date: Optional[str] = None
    event_time: Optional[str] = None
    max_participants: Optional[int] = Field(None, ge=1)

    @field_validator("event_date", mode="before")
    @classmethod
    def _normalize_date(cls, value):
        if value is None:
            return value
        return normalize_event_date(value)


class Event(EventDraft):
    """Stored event document."""

    model_config = ConfigDict(extra="ignore")

    organizer_id: str = Field(..., description="Subject of the organizer's identity token")
    status: EventStatus = Field("active", description="active|cancelled|completed")
    search_text: str = Field("", description="Lowercased title and description")
    participant_count: int = Field(0, ge=0, description="Registered participants")


class Participant(BaseModel):
    event_id: str = Field(..., description="Event ID")
    user_id: str = Field(..., description="Registrant's user ID")
    status: RegistrationStatus = Field("registered", description="registered|cancelled")
    registered_at: datetime = Field(..., description="Time of the latest join")


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    profile_photo_url: Optional[str] = None
    is_admin_approved: Optional[bool] = None
