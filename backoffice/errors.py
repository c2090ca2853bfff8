"""
Studio Back-Office — Domain errors.

Services raise these; ``main.py`` turns them into ``{"detail": ...}`` JSON
responses with the matching status code.
"""


class BackofficeError(Exception):
    """Base class for every error a lifecycle operation can report."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BackofficeError):
    """Missing or invalid input."""

    status_code = 400


class NotFoundError(BackofficeError):
    status_code = 404


class AuthorizationError(BackofficeError):
    """Caller lacks the role or capability for the operation."""

    status_code = 403


class AuthenticationError(AuthorizationError):
    """No usable credentials were presented."""

    status_code = 401


class ConflictError(BackofficeError):
    """Transition attempted from the wrong state, duplicate record or replayed token."""

    status_code = 409


class ExternalServiceError(BackofficeError):
    """Payment gateway or other upstream failure on a critical path."""

    status_code = 502
