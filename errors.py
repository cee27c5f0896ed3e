"""Error taxonomy shared by the service modules and the HTTP layer."""

from typing import Optional


class SalesTrackerError(Exception):
    """Base class for errors that map onto a structured error response."""

    status_code = 500

    def __init__(self, message: str, *, inserted: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.inserted = inserted


class ValidationError(SalesTrackerError):
    """A single record is missing or carries an invalid required field."""

    status_code = 400


class AuthenticationError(SalesTrackerError):
    status_code = 401


class PermissionDenied(SalesTrackerError):
    status_code = 403


class NotFoundError(SalesTrackerError):
    status_code = 404


class ConflictError(SalesTrackerError):
    """A unique key (username, item code, leave start date) already exists."""

    status_code = 409


class FileFormatError(SalesTrackerError):
    """The uploaded spreadsheet is unreadable or has nothing to import."""

    status_code = 400


class StoreUnavailableError(SalesTrackerError):
    status_code = 503
