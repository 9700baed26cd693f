"""
Error types raised by the playback service

Each error carries the HTTP status code the routes answer with, so the
blueprint can turn any PlaybackError into a JSON error response.
"""


class PlaybackError(Exception):
    """Base class for caller-visible playback errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PlaybackError):
    """Unknown playback identifier (or no current now-playing entry)"""

    status_code = 404

    def __init__(self, entity: str, identifier=None):
        if identifier is None:
            message = f'{entity} not found'
        else:
            message = f'{entity} {identifier} not found'
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class ForbiddenError(PlaybackError):
    """The authenticated user is not allowed to touch this record"""

    status_code = 403


class ValidationError(PlaybackError):
    """Malformed submission, patch, threshold or paging parameters"""

    status_code = 400


class LookupUnavailableError(PlaybackError):
    """
    The catalog lookup could not be performed (timeout, connection error,
    server error). Retryable, and distinct from a lookup that found nothing.
    """

    status_code = 503


class ConflictError(PlaybackError):
    """A playback with the client-supplied identifier already exists"""

    status_code = 409
