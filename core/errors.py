from typing import Any, Dict, Optional


class ApiError(Exception):
    """
    Base class for errors that map onto an HTTP status.

    Attributes:
        message: Client-facing error message
        status_code: HTTP status returned to the client
        context: Extra server-side details, logged but never sent to the client
    """

    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ValidationError(ApiError):
    """Client sent a body that does not satisfy the endpoint contract."""

    status_code = 400


class AuthError(ApiError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class RequestTimeoutError(ApiError):
    status_code = 408

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message)


class StoreError(ApiError):
    """
    The database rejected or failed an operation.

    Covers connectivity problems, constraint violations and aborted
    transactions. The client only ever sees a generic message.
    """

    status_code = 500


class InitializationError(ApiError):
    """Raised at startup when the store cannot be configured or reached."""

    def __init__(
        self,
        message: str,
        db_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if db_name:
            context["db_name"] = db_name
        super().__init__(message, context=context)
        self.db_name = db_name
