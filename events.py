"""
Event lifecycle: create, read, list/search, update and cancel hiking events.
"""
import logging
import re
from datetime import datetime
from typing import Callable, Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import ReturnDocument

from auth import Identity
from database import EVENTS, Database, to_str_id, utcnow
from errors import Forbidden, InvalidArgument, NotFound, Unauthorized
from pagination import fetch_page
from schemas import EVENT_DATE_FORMAT, Event, EventDraft, EventUpdate, is_date_only, normalize_event_date

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


def build_search_text(title: str, description: str) -> str:
    return f"{(title or '').lower()} {(description or '').lower()}"


def parse_object_id(value: str, label: str = "Event") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{label} not found")


def date_bound(value, end: bool = False) -> str:
    try:
        bound = normalize_event_date(value)
    except ValueError:
        raise InvalidArgument("Dates must be ISO-8601 formatted")
    if end and is_date_only(value):
        bound = bound[:11] + "23:59:59Z"
    return bound


class EventService:
    def __init__(
        self,
        database: Database,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.page_size = page_size
        self.clock = clock

    @property
    def collection(self):
        return self.database.events

    def _now_text(self) -> str:
        return self.clock().strftime(EVENT_DATE_FORMAT)

    def _load(self, event_id: str) -> dict:
        doc = self.collection.find_one({"_id": parse_object_id(event_id)})
        if not doc:
            raise NotFound("Event not found")
        return doc

    def _authorize_owner(self, identity: Identity, doc: dict, action: str) -> None:
        if doc["organizer_id"] != identity.user_id and not identity.is_admin:
            raise Forbidden(f"Unauthorized to {action} this event")

    def create(self, identity: Optional[Identity], draft: EventDraft) -> dict:
        if identity is None:
            raise Unauthorized()
        if draft.event_date < self._now_text():
            raise InvalidArgument("Event date cannot be in the past")

        event = Event(
            **draft.model_dump(),
            organizer_id=identity.user_id,
            status="active",
            search_text=build_search_text(draft.title, draft.description),
            participant_count=0,
        )
        now = self.clock()
        oid = self.database.create_document(
            EVENTS, {**event.model_dump(), "created_at": now, "updated_at": now}
        )
        logger.info("Event %s created by %s", oid, identity.user_id)
        return to_str_id(self.collection.find_one({"_id": ObjectId(oid)}))

    def get(self, event_id: str) -> dict:
        return to_str_id(self._load(event_id))

    def list(
        self,
        start_date=None,
        end_date=None,
        search_term: Optional[str] = None,
        last_evaluated_key: Optional[str] = None,
    ) -> dict:
        """Return one page of active events ordered by event date.

        Date bounds are inclusive; a date-only end bound covers the whole
        day. The search term is a case-insensitive substring match against
        the stored search text.
        """
        query = {"status": "active"}
        date_range = {}
        if start_date:
            date_range["$gte"] = date_bound(start_date)
        if end_date:
            date_range["$lte"] = date_bound(end_date, end=True)
        if date_range:
            query["event_date"] = date_range
        if search_term and search_term.strip():
            query["search_text"] = {"$regex": re.escape(search_term.strip().lower())}

        docs, token = fetch_page(self.collection, query, self.page_size, last_evaluated_key)
        return {"events": [to_str_id(d) for d in docs], "lastEvaluatedKey": token}

    def update(self, identity: Optional[Identity], event_id: str, patch: EventUpdate) -> dict:
        if identity is None:
            raise Unauthorized()
        current = self._load(event_id)
        self._authorize_owner(identity, current, "update")

        changes = patch.model_dump(exclude_unset=True)
        for required in ("title", "location", "event_date"):
            if required in changes and changes[required] is None:
                raise InvalidArgument(f"{required} cannot be empty")
        if "event_date" in changes and changes["event_date"] < self._now_text():
            raise InvalidArgument("Event date cannot be in the past")
        for field, empty in (("categories", []), ("event_time", "")):
            if field in changes and changes[field] is None:
                changes[field] = empty

        title = changes.get("title", current.get("title"))
        description = changes.get("description", current.get("description"))
        if description is None:
            changes["description"] = description = ""
        changes["search_text"] = build_search_text(title, description)
        changes["updated_at"] = self.clock()

        doc = self.collection.find_one_and_update(
            {"_id": current["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFound("Event not found")
        return to_str_id(doc)

    def cancel(self, identity: Optional[Identity], event_id: str) -> dict:
        """Move an active event to `cancelled`; repeating the call is a no-op."""
        if identity is None:
            raise Unauthorized()
        current = self._load(event_id)
        self._authorize_owner(identity, current, "cancel")

        doc = self.collection.find_one_and_update(
            {"_id": current["_id"], "status": "active"},
            {"$set": {"status": "cancelled", "updated_at": self.clock()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            logger.info("Event %s cancelled by %s", event_id, identity.user_id)
            return to_str_id(doc)

        latest = self._load(event_id)
        if latest["status"] == "cancelled":
            return to_str_id(latest)
        raise InvalidArgument(f"Cannot cancel an event that is {latest['status']}")
