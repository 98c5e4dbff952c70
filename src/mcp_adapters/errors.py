"""Error taxonomy shared by every adapter."""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Failure categories a caller can branch on."""

    ENVIRONMENT_VALIDATION = "EnvironmentValidation"
    DOWNSTREAM_SERVICE = "DownstreamService"
    UNEXPECTED = "Unexpected"


_STATUS_REASONS = {
    401: ("Unauthorized", "unauthorized"),
    403: ("Forbidden", "forbidden"),
    404: ("Not Found", "not_found"),
    429: ("Too Many Requests", "rate_limited"),
}


class CategorizedError(Exception):
    """An error tagged with an :class:`ErrorKind`.

    The kind travels as data rather than as a subclass, so the dispatcher and
    the transports can serialize it without isinstance checks per adapter.
    Attributes are read-only once the error is constructed.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self._kind = ErrorKind(kind)
        self._message = message
        self._status_code = status_code
        self._endpoint = endpoint
        self._details = dict(details) if details else {}
        self._cause = cause

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @property
    def details(self) -> Dict[str, Any]:
        return dict(self._details)

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    @classmethod
    def environment(cls, message: str, fields: List[Dict[str, Any]]) -> "CategorizedError":
        """Create an environment validation error naming every bad field."""
        return cls(ErrorKind.ENVIRONMENT_VALIDATION, message, details={"fields": list(fields)})

    @classmethod
    def downstream(
        cls,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ) -> "CategorizedError":
        """Create a downstream service error."""
        return cls(
            ErrorKind.DOWNSTREAM_SERVICE,
            message,
            status_code=status_code,
            endpoint=endpoint,
            details=details,
            cause=cause,
        )

    @classmethod
    def unexpected(cls, message: str, cause: Optional[BaseException] = None) -> "CategorizedError":
        """Create an error for failures nobody classified."""
        return cls(ErrorKind.UNEXPECTED, message, cause=cause)

    @classmethod
    def from_status(
        cls,
        status_code: int,
        endpoint: Optional[str] = None,
        details: Any = None,
        retry_after: Optional[float] = None
    ) -> "CategorizedError":
        """Map an HTTP status returned by a downstream API to an error.

        Args:
            status_code: HTTP status code (expected to be >= 400)
            endpoint: URL or operation that failed
            details: Parsed response body, if any
            retry_after: Seconds until a rate limit resets, if known

        Returns:
            DownstreamService error with a machine-readable ``reason``
        """
        if status_code in _STATUS_REASONS:
            message, reason = _STATUS_REASONS[status_code]
        elif status_code >= 500:
            message, reason = "Server Error", "server_error"
        else:
            message, reason = "HTTP Error", "http_error"

        extra: Dict[str, Any] = {"reason": reason}
        if details is not None:
            extra["response"] = details
        if status_code == 429 and retry_after is not None:
            extra["retryAfter"] = retry_after
        return cls.downstream(message, status_code=status_code, endpoint=endpoint, details=extra)

    def to_dict(self) -> Dict[str, Any]:
        """Fields of the failure envelope for this error."""
        details = self.details
        if self._status_code is not None:
            details["statusCode"] = self._status_code
        if self._endpoint is not None:
            details["endpoint"] = self._endpoint

        result: Dict[str, Any] = {
            "errorKind": self._kind.value,
            "message": self._message,
        }
        if details:
            result["details"] = details
        return result

    def __repr__(self) -> str:
        return f"CategorizedError(kind={self._kind.value!r}, message={self._message!r})"


class RegistrationError(ValueError):
    """A capability could not be registered."""


class LifecycleError(RuntimeError):
    """An operation was attempted in the wrong server state."""
