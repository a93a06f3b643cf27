class GeoAttendError(Exception):
    """Base error for all user-facing GeoAttend exceptions."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GeoAttendError):
    """Raised when input is malformed or missing."""

    status_code = 400


class InvalidCoordinateError(ValidationError):
    """Raised when a latitude/longitude is missing or out of range."""


class NotFoundError(GeoAttendError):
    """Raised when no session was ever issued with a code."""

    status_code = 400


class ExpiredError(GeoAttendError):
    """Raised when a code resolves to a session past its expiry."""

    status_code = 400


class MismatchError(GeoAttendError):
    """Raised when the claimant's classification differs from the session's."""

    status_code = 400


class ConflictError(GeoAttendError):
    """Raised when a claim for the same claimant and session already exists."""

    status_code = 409


class ExhaustedError(ConflictError):
    """Raised when no unused code could be minted within the attempt budget."""

    status_code = 503


class DuplicateKeyError(GeoAttendError):
    """Raised by a store when an insert violates a uniqueness constraint."""

    status_code = 409


class InternalError(GeoAttendError):
    """Raised on store or transport failure. Callers see a generic message."""

    status_code = 500


class StoreError(InternalError):
    """Raised when the backing database cannot complete an operation."""
