from typing import Dict, Optional

from fastapi import HTTPException, status


class PresentationError(HTTPException):
    """Base for every failure raised by the presentation booking core.

    Subclasses pin the HTTP status and a stable ``code`` so an API layer can
    return them as-is. ``retryable`` marks failures a caller may retry with
    fresh state.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    code = "presentation_error"
    retryable = False

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        detail = {"code": self.code, "message": message}
        if errors:
            detail["errors"] = dict(errors)
        super().__init__(status_code=type(self).status_code, detail=detail)
        self.message = message
        self.errors = dict(errors or {})

    def __str__(self) -> str:
        return self.message


class ValidationError(PresentationError):
    status_code = 422
    code = "validation_error"


class ConfigError(ValidationError):
    code = "config_error"


class InvalidTransition(PresentationError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class Conflict(PresentationError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    retryable = True


class CapacityViolation(PresentationError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "capacity_violation"


class DuplicateParticipant(PresentationError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_participant"


class WindowClosed(PresentationError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "window_closed"
    retryable = True


class NotFound(PresentationError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class PermissionDenied(PresentationError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "permission_denied"
