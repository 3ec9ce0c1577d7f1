"""
MongoDB access for the hiking events service.

`Database` wraps a pymongo database handle and is passed explicitly to the
services, the worker and the sweep instead of living as module state.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import OperationFailure

from config import Settings

logger = logging.getLogger(__name__)

EVENTS = "events"
PARTICIPANTS = "participants"
USERS = "users"
CHECKPOINTS = "checkpoints"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_str_id(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


class Database:
    def __init__(self, db, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        client = MongoClient(settings.database_url, tz_aware=True)
        return cls(client[settings.database_name])

    @property
    def events(self):
        return self.db[EVENTS]

    @property
    def participants(self):
        return self.db[PARTICIPANTS]

    @property
    def users(self):
        return self.db[USERS]

    @property
    def checkpoints(self):
        return self.db[CHECKPOINTS]

    def ensure_indexes(self) -> None:
        self.events.create_index([("status", ASCENDING), ("event_date", ASCENDING), ("_id", ASCENDING)])
        self.events.create_index([("status", ASCENDING), ("search_text", ASCENDING)])
        self.participants.create_index(
            [("event_id", ASCENDING), ("user_id", ASCENDING)], unique=True
        )
        self.participants.create_index([("event_id", ASCENDING), ("status", ASCENDING)])

    def enable_pre_images(self) -> None:
        """Ask the server to record pre-images so event updates carry their old values."""
        try:
            self.db.command("collMod", EVENTS, changeStreamPreAndPostImages={"enabled": True})
        except OperationFailure as exc:
            logger.warning("Could not enable change stream pre-images on %s: %s", EVENTS, exc)

    def create_document(self, collection_name: str, data: Any) -> str:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        doc = dict(data)
        now = self.clock()
        doc.setdefault("created_at", now)
        doc.setdefault("updated_at", now)
        result = self.db[collection_name].insert_one(doc)
        return str(result.inserted_id)

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict] = None, limit: Optional[int] = None):
        cursor = self.db[collection_name].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)
