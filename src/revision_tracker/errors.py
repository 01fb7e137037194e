"""Error taxonomy shared by the store, the scheduler and the HTTP layer.

HTTP ステータスへの対応付けは main.py の例外ハンドラで一元管理する。
"""

from __future__ import annotations


class QuestionStoreError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code: int = 500
    public_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class InvalidArgumentError(QuestionStoreError):
    """Missing or malformed input (absent field, foreign URL, interval <= 0)."""

    status_code = 400
    public_message = "Invalid argument"


class ConflictError(QuestionStoreError):
    """A live record already owns the unique source URL."""

    status_code = 409
    public_message = "Question with this URL already exists"


class NotFoundError(QuestionStoreError):
    """The referenced question id does not exist."""

    status_code = 404
    public_message = "Question not found"


class UnavailableError(QuestionStoreError):
    """The underlying storage was unreachable or timed out.

    The message carries internal detail for logs only; callers get
    `public_message`.
    """

    status_code = 500
    public_message = "Storage is temporarily unavailable"
