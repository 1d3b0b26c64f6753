from __future__ import annotations

from typing import List, Optional


class ShowerError(Exception):
    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str = "", details: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def response_message(self) -> str:
        return self.public_message or self.message or "Internal server error"


class ValidationError(ShowerError):
    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[List[str]] = None) -> None:
        super().__init__(message, details)


class AuthorizationError(ShowerError):
    status_code = 401


class NotFoundError(ShowerError):
    status_code = 404


class ConflictError(ShowerError):
    status_code = 409


class UpstreamWriteError(ShowerError):
    """The backend rejected a call or could not be reached."""

    status_code = 500

    def __init__(self, message: str, backend_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.backend_status = backend_status


class UpstreamBestEffortError(ShowerError):
    """A webhook or text-completion call failed; callers log and carry on."""


class ConfigurationError(ShowerError):
    status_code = 500
    public_message = "Server configuration error"
