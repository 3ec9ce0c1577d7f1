"""
Joining and leaving events.

Capacity is enforced with a conditional increment of the event's
`participant_count`, so concurrent joins can never push an event past
`max_participants`.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import Identity
from database import Database, to_str_id, utcnow
from errors import CapacityExceeded, Conflict, Forbidden, Gone, NotFound, Unauthorized
from events import parse_object_id
from schemas import Participant

logger = logging.getLogger(__name__)

RESERVE_ATTEMPTS = 3


class ParticipationService:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def _event(self, event_id: str) -> dict:
        event = self.database.events.find_one({"_id": parse_object_id(event_id)})
        if not event:
            raise NotFound("Event not found")
        return event

    def _reserve_slot(self, event: dict) -> None:
        for _ in range(RESERVE_ATTEMPTS):
            maximum = event.get("max_participants")
            filt = {"_id": event["_id"], "status": "active", "max_participants": maximum}
            if maximum:
                filt["participant_count"] = {"$lt": maximum}
            if self.database.events.find_one_and_update(filt, {"$inc": {"participant_count": 1}}):
                return

            latest = self.database.events.find_one({"_id": event["_id"]})
            if not latest or latest.get("status") != "active":
                raise Gone()
            if latest.get("max_participants") == maximum:
                raise CapacityExceeded()
            # the organizer changed the cap between our read and write
            event = latest
        raise CapacityExceeded()

    def _release_slot(self, event_oid) -> None:
        self.database.events.update_one(
            {"_id": event_oid, "participant_count": {"$gt": 0}},
            {"$inc": {"participant_count": -1}},
        )

    def join(self, identity: Optional[Identity], event_id: str) -> dict:
        if identity is None:
            raise Unauthorized()
        event = self._event(event_id)
        if event.get("status") != "active":
            raise Gone()

        key = {"event_id": str(event["_id"]), "user_id": identity.user_id}
        existing = self.database.participants.find_one(key)
        if existing and existing.get("status") == "registered":
            raise Conflict()

        self._reserve_slot(event)
        registration = Participant(**key, status="registered", registered_at=self.clock())
        try:
            previous = self.database.participants.find_one_and_update(
                key,
                {"$set": registration.model_dump()},
                upsert=True,
                return_document=ReturnDocument.BEFORE,
            )
        except DuplicateKeyError:
            previous = {"status": "registered"}
        except Exception:
            self._release_slot(event["_id"])
            raise
        if previous and previous.get("status") == "registered":
            # a concurrent join by the same user won the race
            self._release_slot(event["_id"])
            raise Conflict()

        logger.info("User %s joined event %s", identity.user_id, key["event_id"])
        return to_str_id(self.database.participants.find_one(key))

    def leave(self, identity: Optional[Identity], event_id: str) -> dict:
        if identity is None:
            raise Unauthorized()
        event_oid = parse_object_id(event_id, label="Registration")
        key = {"event_id": str(event_oid), "user_id": identity.user_id}

        doc = self.database.participants.find_one_and_update(
            {**key, "status": "registered"},
            {"$set": {"status": "cancelled"}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            self._release_slot(event_oid)
            logger.info("User %s left event %s", identity.user_id, key["event_id"])
            return to_str_id(doc)

        existing = self.database.participants.find_one(key)
        if not existing:
            raise NotFound("Registration not found")
        return to_str_id(existing)

    def list_participants(self, identity: Optional[Identity], event_id: str) -> list:
        if identity is None:
            raise Unauthorized()
        event = self._event(event_id)
        event_key = str(event["_id"])

        if event.get("organizer_id") != identity.user_id:
            own = self.database.participants.find_one({"event_id": event_key, "user_id": identity.user_id})
            if not own or own.get("status") != "registered":
                raise Forbidden("Not authorized to view participants")

        rows = self.database.participants.find({"event_id": event_key, "status": "registered"}).sort(
            "registered_at", 1
        )
        return [to_str_id(row) for row in rows]
