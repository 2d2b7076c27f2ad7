"""Error taxonomy for engine operations.

Every failure an operation can report to its caller is an ``EduverseError``.
``status_code`` is the HTTP status a transport layer should map it to and
``to_result()`` gives the tagged failure shape.
"""

from __future__ import annotations

from typing import Any


class EduverseError(Exception):
    """Base class for engine errors surfaced to callers."""

    code = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": self.code, "message": self.message}


class NotFound(EduverseError):
    """Referenced entity does not exist (possibly deleted concurrently)."""

    code = "not_found"
    status_code = 404

    def __init__(self, collection: str, entity_id: str, message: str | None = None) -> None:
        super().__init__(message or f"{collection} {entity_id} not found")
        self.collection = collection
        self.entity_id = entity_id


class DuplicateFact(EduverseError):
    """The membership transition was a no-op because the fact already held."""

    code = "duplicate"
    status_code = 409


class CapacityExceeded(EduverseError):
    """A bounded set (team members) is full."""

    code = "capacity_exceeded"
    status_code = 409


class ValidationError(EduverseError):
    """Input that cannot be normalised to a safe value."""

    code = "validation_error"
    status_code = 400


class StoreUnavailable(EduverseError):
    """The document store could not be reached."""

    code = "store_unavailable"
    status_code = 503
