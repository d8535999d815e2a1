from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base for errors that map onto a JSON error envelope."""

    status_code = 500

    def __init__(self, message: str, *, field: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "message": self.message, "error": type(self).__name__}
        if self.field:
            payload["field"] = self.field
        if self.details:
            payload.update(self.details)
        return payload


class ValidationError(ServiceError):
    status_code = 400


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class IneligibleError(ServiceError):
    status_code = 409

    def __init__(self, current_status: str, message: str | None = None):
        super().__init__(
            message or f"Student is not eligible for promotion (status: {current_status})",
            details={"currentStatus": current_status},
        )
        self.current_status = current_status


class DuplicateReminderError(ServiceError):
    """An active reminder already exists for the (fee, reminder type) pair.

    Raised and swallowed inside reminder creation; never reaches a caller.
    """

    status_code = 409


class DeliveryError(ServiceError):
    """The notification sender reported a failure."""

    status_code = 502


class AggregationError(ServiceError):
    status_code = 500


def require_fields(payload: dict[str, Any], *fields: str) -> None:
    for name in fields:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{name} is required", field=name)
