"""Error taxonomy raised by the appointment engine and its collaborators.

Each error carries a stable ``kind`` and the HTTP status the API renders it
with. Messages are meant for end users; store or driver details never go in
them.
"""

from fastapi import status


class AppointmentError(Exception):
    """Base class for errors that surface to API callers."""

    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AppointmentError):
    """A student, faculty member, slot, department or appointment does not exist."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidArgumentError(AppointmentError):
    """Bad status value, malformed time or date, or a field out of bounds."""

    kind = "invalid_argument"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(AppointmentError):
    """The slot is taken or the appointment is not in a state that allows the transition."""

    kind = "conflict"
    status_code = status.HTTP_400_BAD_REQUEST


class ForbiddenError(AppointmentError):
    """The actor does not own the resource."""

    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class UnavailableError(AppointmentError):
    """The data store failed transiently."""

    kind = "unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


DATABASE_UNAVAILABLE_MESSAGE = 'Database unavailable. Verify DATABASE_URL and database credentials.'
