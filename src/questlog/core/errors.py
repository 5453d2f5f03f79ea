"""Error types shared by the progress service and its storage adapters."""

from datetime import datetime, timezone


class ApiError(Exception):
    """Client-facing failure with an HTTP status and a stable error code.

    Raised by the primary (request) path of the progress service. The HTTP
    layer renders it with :meth:`to_response`.
    """

    def __init__(self, status_code: int, message: str, code: str = "API_ERROR"):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code

    def to_response(self) -> dict:
        """Render the consistent error envelope used by the API."""
        return {
            "success": False,
            "error": self.message,
            "meta": {
                "code": self.code,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }

    def __repr__(self) -> str:
        return f"ApiError({self.status_code}, {self.message!r}, {self.code!r})"

    @classmethod
    def bad_request(cls, message: str = "Bad request") -> "ApiError":
        return cls(400, message, "BAD_REQUEST")

    @classmethod
    def internal(cls, message: str = "Internal server error") -> "ApiError":
        return cls(500, message, "INTERNAL_ERROR")


class ProgressNotFoundError(LookupError):
    """Raised when a user's progress document does not exist."""

    def __init__(self, user_id: str):
        super().__init__(f"Progress document not found for user {user_id}")
        self.user_id = user_id


class TransactionConflictError(Exception):
    """Raised when a transaction lost a write race and may be retried."""

    pass


class CatalogLoadError(Exception):
    """Raised when the task catalog file cannot be read or validated."""

    pass
