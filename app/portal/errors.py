"""
Typed failures for the packet lifecycle and population services.

Services catch these and hand them back inside an OperationResult so the HTTP
layer can render a precise message; they never leak out as bare exceptions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


class PortalError(RuntimeError):
    code = "error"
    http_status = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": False, "error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class Unauthorized(PortalError):
    code = "unauthorized"
    http_status = 403


class NotFound(PortalError):
    code = "not_found"
    http_status = 404


class InvalidTransition(PortalError):
    code = "invalid_transition"
    http_status = 409


class InvalidInput(PortalError):
    code = "bad_request"
    http_status = 400


class ContentShapeMismatch(PortalError):
    code = "content_shape_mismatch"
    http_status = 422


class ConflictError(PortalError):
    code = "conflict"
    http_status = 409


class ExternalServiceError(PortalError):
    code = "external_service_error"
    http_status = 502


T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    value: T | None = None
    error: PortalError | None = None
    # Downstream failures (notification, render) that did not undo the committed change.
    warnings: list[ExternalServiceError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, *, warnings: list[ExternalServiceError] | None = None) -> "OperationResult[T]":
        return cls(value=value, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: PortalError) -> "OperationResult[T]":
        return cls(error=error)
