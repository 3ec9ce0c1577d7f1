"""Opaque continuation tokens for keyset pagination over `(event_date, _id)`."""
import base64
import binascii
import json
from typing import Optional, Tuple

from bson.errors import InvalidId
from bson.objectid import ObjectId

from errors import InvalidArgument


def encode_cursor(doc: dict) -> str:
    payload = json.dumps({"d": doc["event_date"], "i": str(doc["_id"])}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: str) -> Tuple[str, ObjectId]:
    try:
        padded = token + "=" * (-len(token) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        return str(payload["d"]), ObjectId(payload["i"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, InvalidId):
        raise InvalidArgument("Invalid lastEvaluatedKey")


def after_cursor(token: Optional[str]) -> dict:
    """Filter clause selecting documents strictly after the cursor position."""
    if not token:
        return {}
    event_date, last_id = decode_cursor(token)
    return {
        "$or": [
            {"event_date": {"$gt": event_date}},
            {"event_date": event_date, "_id": {"$gt": last_id}},
        ]
    }


def fetch_page(collection, query: dict, limit: int, token: Optional[str] = None):
    """Return `(docs, next_token)`; `next_token` is None on the last page."""
    filt = dict(query)
    clause = after_cursor(token)
    if clause:
        filt = {"$and": [query, clause]}
    docs = list(
        collection.find(filt).sort([("event_date", 1), ("_id", 1)]).limit(limit + 1)
    )
    if len(docs) > limit:
        docs = docs[:limit]
        return docs, encode_cursor(docs[-1])
    return docs, None
