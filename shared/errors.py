"""
Shared error handling for the licensing backend.

Two families matter to the request pipeline:

- ClientError: deliberate, client-facing outcomes (bad input, outdated
  client, authorization denial). These always propagate to the caller.
- InfrastructureFault: storage or data problems. The pipeline never
  surfaces these to the client; it drops the billing context and records
  the fault instead.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class LicensingException(Exception):
    """Base exception for licensing services."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers: Dict[str, str] = {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )

    def to_body(self) -> Dict[str, Any]:
        """Body sent to the client."""
        return self.to_response().model_dump()


class ClientError(LicensingException):
    """Errors caused by the request itself; always reported to the client."""

    status_code = 400


class ValidationError(ClientError):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UpgradeRequired(ClientError):
    """Client version is missing or below the supported minimum."""

    status_code = 426

    def __init__(self, minimum_version: str, client_version: Optional[str] = None):
        super().__init__(
            "UPGRADE_REQUIRED",
            f"Client version {minimum_version} or higher required. You have {client_version}.",
            {"minimumVersion": minimum_version, "clientVersion": client_version}
        )


class AuthorizationDenied(ClientError):
    """A denial verdict raised for enforcement.

    The body mirrors what clients expect for a blocked request:
    ``{"error": {"code": ..., ...details}}``.
    """

    status_code = 403

    def __init__(self, code: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, f"Authorization denied: {code}", details)

    def to_body(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, **self.details}}


class InfrastructureFault(LicensingException):
    """Storage unavailable, malformed persisted document, or similar."""

    def __init__(self, message: str = "Infrastructure fault", details: Optional[Dict[str, Any]] = None,
                 code: str = "INFRASTRUCTURE_FAULT"):
        super().__init__(code, message, details)

    @classmethod
    def from_exception(cls, exc: BaseException, stage: Optional[str] = None) -> "InfrastructureFault":
        """Wrap an arbitrary exception, keeping the original as the cause."""
        if isinstance(exc, InfrastructureFault):
            fault = exc
        else:
            fault = cls(str(exc) or type(exc).__name__, {"type": type(exc).__name__})
            fault.__cause__ = exc
        if stage:
            fault.details.setdefault("stage", stage)
        return fault


class WriteConflictError(InfrastructureFault):
    """Optimistic update gave up after exhausting its attempts."""

    def __init__(self, path: str, attempts: int):
        super().__init__(
            f"Optimistic update of {path} failed after {attempts} attempts",
            {"path": path, "attempts": attempts},
            code="WRITE_CONFLICT"
        )
