"""
User directory: profile reads and updates, restricted to the profile's
owner or an admin.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from pymongo import ReturnDocument

from auth import Identity
from database import Database, to_str_id, utcnow
from errors import Forbidden, InvalidArgument, NotFound, Unauthorized
from schemas import UserUpdate

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    @staticmethod
    def _authorize(identity: Optional[Identity], user_id: str) -> Identity:
        if identity is None:
            raise Unauthorized()
        if identity.user_id != user_id and not identity.is_admin:
            raise Forbidden("Unauthorized to access this resource")
        return identity

    def get(self, identity: Optional[Identity], user_id: str) -> dict:
        self._authorize(identity, user_id)
        doc = self.database.users.find_one({"_id": user_id})
        if not doc:
            raise NotFound("User not found")
        return to_str_id(doc)

    def update(self, identity: Optional[Identity], user_id: str, changes: UserUpdate) -> dict:
        """Apply profile changes, creating the profile on its first save."""
        identity = self._authorize(identity, user_id)
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise InvalidArgument("No profile fields to update")
        if "is_admin_approved" in fields and not identity.is_admin:
            raise Forbidden("Only admins can change approval")
        if "email" in fields:
            fields["email"] = str(fields["email"])

        now = self.clock()
        on_insert = {"created_at": now}
        if identity.user_id == user_id:
            defaults = {
                "email": identity.email or "",
                "name": "",
                "is_email_verified": identity.email_verified,
            }
            on_insert.update({k: v for k, v in defaults.items() if k not in fields})
        elif not self.database.users.find_one({"_id": user_id}):
            raise NotFound("User not found")

        doc = self.database.users.find_one_and_update(
            {"_id": user_id},
            {"$set": {**fields, "updated_at": now}, "$setOnInsert": on_insert},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Profile %s updated by %s", user_id, identity.user_id)
        return to_str_id(doc)
