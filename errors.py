"""Error taxonomy shared by services and blueprints.

Each error carries the HTTP status and machine-readable code the JSON error
handler in app.py renders, plus whether a client retry could help.
"""

from __future__ import annotations


class StoryQuizError(Exception):
    status_code = 500
    error_code = "internal_error"
    retryable = False

    def __init__(self, message: str = "", *, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }


class NotFoundError(StoryQuizError):
    status_code = 404
    error_code = "not_found"


class BookNotFoundError(NotFoundError):
    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book not found: {book_id}")
        self.book_id = book_id


class InvitationNotFoundError(NotFoundError):
    def __init__(self, code: str) -> None:
        super().__init__("This invitation code is not valid.")
        self.code = code


class ValidationFailedError(StoryQuizError):
    status_code = 400
    error_code = "validation_failed"


class EventValidationError(ValidationFailedError):
    pass


class InsufficientContentError(StoryQuizError):
    """The book lacks enough descriptive content to build a meaningful quiz."""

    status_code = 422
    error_code = "insufficient_data"


class QuizGenerationError(StoryQuizError):
    """Generation failed upstream (retryable) or returned an unusable quiz (not retryable)."""

    status_code = 502
    error_code = "generation_failed"


class UpstreamServiceError(StoryQuizError):
    status_code = 502
    error_code = "upstream_error"
    retryable = True


class AccessDeniedError(StoryQuizError):
    status_code = 403
    error_code = "access_denied"


class InvalidActionError(StoryQuizError):
    status_code = 409
    error_code = "invalid_action"
