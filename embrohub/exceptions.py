"""
Domain error hierarchy.

Services raise these; ``embrohub.main`` maps them onto HTTP responses with the
``{"success": false, "message": ..., "error": ...}`` envelope.
"""
from typing import Optional


class EmbroHubError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        self.message = message
        self.error = error
        super().__init__(message)


class ValidationError(EmbroHubError):
    """Missing/invalid input or a transition the current state does not allow."""

    status_code = 400


class AuthenticationError(EmbroHubError):
    """Bad credentials."""

    status_code = 401


class AuthorizationError(EmbroHubError):
    """Actor role or ownership does not permit the operation."""

    status_code = 403

    def __init__(self, message: str = "Not authorized", error: Optional[str] = None):
        super().__init__(message, error)


class NotFoundError(EmbroHubError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[object] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class ExternalServiceError(EmbroHubError):
    """Email, payment or storage failure on the primary step of an operation."""

    status_code = 502


def error_body(message: str, error: Optional[str] = None) -> dict:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    return body


__all__ = [
    "EmbroHubError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ExternalServiceError",
    "error_body",
]
