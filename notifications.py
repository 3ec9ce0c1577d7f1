"""
Email notifications driven by datastore change records.

The dispatcher never writes to the datastore. It reads registrations and
profiles to find recipients and hands rendered messages to a mailer.
Delivery is at-least-once: a failed batch is retried as a whole, so a
participant may receive the same message twice.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Iterable, List, NamedTuple, Optional

from bson.objectid import ObjectId

from database import EVENTS, PARTICIPANTS, Database
from schemas import EVENT_DATE_FORMAT

logger = logging.getLogger(__name__)

WATCHED_FIELDS = ("event_date", "event_time", "location", "description")


@dataclass(frozen=True)
class ChangeRecord:
    operation: str
    collection: str
    document: Optional[dict]
    previous: Optional[dict] = None
    changed_fields: Optional[FrozenSet[str]] = None
    key: Optional[dict] = None

    @classmethod
    def from_change_stream(cls, change: dict) -> "ChangeRecord":
        description = change.get("updateDescription") or {}
        changed = None
        if description:
            changed = frozenset(description.get("updatedFields", {})) | frozenset(
                description.get("removedFields", [])
            )
        return cls(
            operation=change.get("operationType", ""),
            collection=(change.get("ns") or {}).get("coll", ""),
            document=change.get("fullDocument"),
            previous=change.get("fullDocumentBeforeChange"),
            changed_fields=changed,
            key=change.get("documentKey"),
        )


class EmailTemplate(NamedTuple):
    subject: str
    body: str


def format_event_date(value: str) -> str:
    try:
        return datetime.strptime(value, EVENT_DATE_FORMAT).strftime("%B %d, %Y")
    except (TypeError, ValueError):
        return str(value)


def event_update_email(event: dict) -> EmailTemplate:
    return EmailTemplate(
        subject=f"Event Update: {event['title']}",
        body=(
            f'The event "{event["title"]}" has been updated.\n\n'
            f"Date: {format_event_date(event.get('event_date'))}\n"
            f"Time: {event.get('event_time', '')}\n"
            f"Location: {event.get('location', '')}\n\n"
            f"Description:\n{event.get('description', '')}\n\n"
            "You can view the full event details by logging into your account.\n"
        ),
    )


def event_cancellation_email(event: dict) -> EmailTemplate:
    return EmailTemplate(
        subject=f"Event Cancelled: {event['title']}",
        body=(
            f'Unfortunately, the event "{event["title"]}" scheduled for '
            f"{format_event_date(event.get('event_date'))} has been cancelled.\n\n"
            "If you have any questions, please contact the event organizer.\n"
        ),
    )


def registration_confirmation_email(event: dict) -> EmailTemplate:
    return EmailTemplate(
        subject=f"Registration Confirmed: {event['title']}",
        body=(
            f'You\'re registered for "{event["title"]}"!\n\n'
            "Event Details:\n"
            f"Date: {format_event_date(event.get('event_date'))}\n"
            f"Time: {event.get('event_time', '')}\n"
            f"Location: {event.get('location', '')}\n\n"
            f"Important Information:\n{event.get('description', '')}\n\n"
            "You can view the full event details and participant list by logging into your account.\n"
        ),
    )


def _first_error(futures) -> Optional[BaseException]:
    errors = [f.exception() for f in futures if f.exception() is not None]
    return errors[0] if errors else None


class NotificationDispatcher:
    def __init__(self, database: Database, mailer, max_workers: int = 8):
        self.database = database
        self.mailer = mailer
        self.max_workers = max(1, max_workers)

    def dispatch(self, records: Iterable[ChangeRecord]) -> int:
        """Process a batch of change records and return the number of emails sent.

        Every record is attempted even when another one fails; the first
        failure is re-raised afterwards so the batch can be redelivered.
        """
        records = list(records)
        if not records:
            return 0
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(records))) as pool:
            futures = [pool.submit(self.process, record) for record in records]

        error = _first_error(futures)
        if error is not None:
            failed = sum(1 for f in futures if f.exception() is not None)
            logger.error("%d of %d change records failed", failed, len(records))
            raise error
        return sum(f.result() for f in futures)

    def process(self, record: ChangeRecord) -> int:
        if record.collection == EVENTS and record.operation in ("update", "replace"):
            return self._event_changed(record)
        if record.collection == PARTICIPANTS and record.operation == "insert":
            return self._registration_created(record)
        return 0

    def _event_changed(self, record: ChangeRecord) -> int:
        event = record.document
        if event is None and record.key:
            # no post-image recorded for this change; fall back to the current state
            event = self.database.events.find_one(record.key)
        if not event:
            return 0
        status = event.get("status")

        if status == "cancelled" and self._was_active(record):
            template = event_cancellation_email(event)
        elif status == "active" and self._details_changed(record):
            template = event_update_email(event)
        else:
            return 0
        return self._send_all(self._registered_user_ids(str(event["_id"])), template)

    @staticmethod
    def _was_active(record: ChangeRecord) -> bool:
        if record.previous is not None:
            return record.previous.get("status") == "active"
        # without a pre-image, a status write to cancelled can only come from active
        return record.changed_fields is not None and "status" in record.changed_fields

    @staticmethod
    def _details_changed(record: ChangeRecord) -> bool:
        if record.previous is not None:
            if record.previous.get("status") != "active":
                return False
            return any(record.previous.get(f) != record.document.get(f) for f in WATCHED_FIELDS)
        if record.changed_fields is not None:
            return "status" not in record.changed_fields and any(
                f in record.changed_fields for f in WATCHED_FIELDS
            )
        return False

    def _registration_created(self, record: ChangeRecord) -> int:
        registration = record.document
        if not registration or registration.get("status") != "registered":
            return 0
        event = self.database.events.find_one({"_id": self._event_key(registration["event_id"])})
        if not event:
            logger.debug("Registration for unknown event %s", registration["event_id"])
            return 0
        return self._send_all([registration["user_id"]], registration_confirmation_email(event))

    @staticmethod
    def _event_key(event_id: str):
        return ObjectId(event_id) if ObjectId.is_valid(event_id) else event_id

    def _registered_user_ids(self, event_id: str) -> List[str]:
        rows = self.database.get_documents(PARTICIPANTS, {"event_id": event_id, "status": "registered"})
        return [row["user_id"] for row in rows]

    def _send_all(self, user_ids: List[str], template: EmailTemplate) -> int:
        if not user_ids:
            return 0
        users = self.database.users.find({"_id": {"$in": list(user_ids)}}, {"email": 1})
        emails = {user["_id"]: user.get("email") for user in users}

        recipients = []
        for user_id in user_ids:
            email = emails.get(user_id)
            if email:
                recipients.append(email)
            else:
                logger.debug("No email address for user %s; skipping", user_id)
        if not recipients:
            return 0

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(recipients))) as pool:
            futures = [
                pool.submit(self.mailer.send, email, template.subject, template.body)
                for email in recipients
            ]
        error = _first_error(futures)
        if error is not None:
            raise error
        return len(recipients)
