"""
Typed service errors.

Services raise these; the API turns them into `{"message", "error"}`
JSON bodies with the matching status code.
"""


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def error(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"message": self.message, "error": self.error}


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class Gone(NotFound):
    """The entity exists but is no longer accepting the operation."""

    default_message = "Event not found or not active"


class InvalidArgument(ServiceError):
    status_code = 400
    default_message = "Invalid request"


class Conflict(ServiceError):
    status_code = 400
    default_message = "Already registered for this event"


class CapacityExceeded(ServiceError):
    status_code = 400
    default_message = "Event is full"


class Internal(ServiceError):
    status_code = 500
