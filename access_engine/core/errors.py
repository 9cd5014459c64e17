"""Domain exceptions raised by the services.

Services never raise HTTPException; they raise one of these and the
handler in middleware/errors.py turns it into a JSON response.  ``code``
picks the HTTP status, ``reason`` is a stable machine-readable tag a
client can branch on (e.g. "no_seats" vs "license_expired").
"""

from __future__ import annotations

from typing import ClassVar

# Machine-readable denial reasons
NO_SEATS = "no_seats"
LICENSE_EXPIRED = "license_expired"
LICENSE_INACTIVE = "license_inactive"
NO_LICENSE = "no_license"
NOT_ENROLLED = "not_enrolled"
PREREQUISITES_UNMET = "prerequisites_unmet"
LESSON_LOCKED = "lesson_locked"
RETAKE_NOT_ALLOWED = "retake_not_allowed"
INVALID_QUESTION = "invalid_question"


class EngineError(Exception):
    code: ClassVar[str] = "ERROR"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class NotFoundError(EngineError):
    code = "NOT_FOUND"


class ConflictError(EngineError):
    code = "CONFLICT"


class BadRequestError(EngineError):
    code = "BAD_REQUEST"


class ForbiddenError(EngineError):
    code = "FORBIDDEN"
