"""
Application error taxonomy.

Every error carries an HTTP status and a stable machine ``code`` so the API
layer can render it without knowing where it came from.  ``ForbiddenError``
covers both "you may not do this" and "this cannot be done in the current
status": to a client both mean the action is not currently permitted.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    code: str = "internal"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 422
    code = "invalid-argument"


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "permission-denied"

    def __init__(self, message: str = "Permission denied", details: Optional[Any] = None):
        super().__init__(message, details)


class NotFoundError(AppError):
    status_code = 404
    code = "not-found"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class ExternalServiceError(AppError):
    """Routing provider failure.  Always absorbed by the oracle fallback."""

    status_code = 503
    code = "unavailable"

    def __init__(self, message: str, service: str):
        super().__init__(f"{service}: {message}")
        self.service = service
