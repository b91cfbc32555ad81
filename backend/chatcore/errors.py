from fastapi import status


class ChatError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ChatError):

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(ChatError):

    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(ChatError):

    status_code = status.HTTP_409_CONFLICT


class ValidationFailedError(ChatError):

    status_code = status.HTTP_400_BAD_REQUEST


class StoreUnavailableError(ChatError):

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class CacheUnavailableError(Exception):
    """Raised by cache adapters. Never reaches an API caller."""
