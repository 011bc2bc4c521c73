"""Exception hierarchy shared by services, routers and the POS integration."""
from __future__ import annotations

from typing import Any


class RestockError(Exception):
    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RestockError):
    """Malformed input, rejected before any write."""

    status_code = 400


class InvalidTransition(ValidationError):
    """Status change that the order lifecycle does not allow (terminal or unknown edge)."""

    status_code = 409


class PermissionDenied(RestockError):
    status_code = 403

    def __init__(
        self,
        message: str,
        *,
        capability: str | None = None,
        section: str | None = None,
    ):
        details = {}
        if capability:
            details["capability"] = capability
        if section:
            details["section"] = section
        super().__init__(message, details=details)
        self.capability = capability
        self.section = section


class NotFoundError(RestockError):
    status_code = 404


class ExternalSystemError(RestockError):
    """POS call failed: network, timeout, upstream error code or malformed body."""

    status_code = 502

    def __init__(self, message: str, *, operation: str | None = None, upstream_status: int | None = None):
        details: dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(message, details=details)
        self.operation = operation
        self.upstream_status = upstream_status


class TenantContextError(RestockError):
    status_code = 500
