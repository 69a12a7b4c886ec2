"""Exception hierarchy mapped onto HTTP responses by the web layer."""

from __future__ import annotations

from typing import List, Optional, Sequence


class ServiceError(RuntimeError):
    """Base class for failures that carry an HTTP status and a client message."""

    status_code = 500

    def __init__(self, message: str, *, details: Optional[Sequence[str] | str] = None) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(details, str):
            self.details: Optional[List[str] | str] = details
        elif details is not None:
            self.details = list(details)
        else:
            self.details = None


class InvalidRequestError(ServiceError):
    """Raised for client mistakes detected before any output is produced."""

    status_code = 400


class UploadTooLargeError(InvalidRequestError):
    """Raised when an uploaded part exceeds its configured size limit."""

    def __init__(self, limit_bytes: int) -> None:
        megabytes = limit_bytes / (1024 * 1024)
        label = f"{megabytes:.0f}" if megabytes.is_integer() else f"{megabytes:.1f}"
        super().__init__(f"File too large. Maximum size is {label}MB.")
        self.limit_bytes = limit_bytes


class AuthenticationError(ServiceError):
    status_code = 401


__all__ = [
    "AuthenticationError",
    "InvalidRequestError",
    "ServiceError",
    "UploadTooLargeError",
]
