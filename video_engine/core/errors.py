"""Error taxonomy shared by every engine component.

Each failure is one of a closed set of variants identified by ``kind``. All of
them carry the same payload shape (kind, message, details, timestamp) so the
HTTP layer and the event log can render any of them without special cases.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any


class ErrorKind(str, enum.Enum):
    validation = "validation"
    processing = "processing"
    service = "service"
    configuration = "configuration"
    invalid_transition = "invalid_transition"
    not_found = "not_found"


class EngineError(Exception):
    """Base for all engine failures. Subclasses pin ``kind``."""

    kind: ErrorKind

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class ValidationError(EngineError):
    kind = ErrorKind.validation

    def __init__(self, message: str, *, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        payload = dict(details or {})
        if field is not None:
            payload.setdefault("field", field)
        super().__init__(message, details=payload)
        self.field = field


class ProcessingError(EngineError):
    kind = ErrorKind.processing


class ServiceError(EngineError):
    kind = ErrorKind.service


class ConfigurationError(EngineError):
    kind = ErrorKind.configuration


class InvalidTransitionError(EngineError):
    kind = ErrorKind.invalid_transition

    def __init__(self, asset_id: str, current: str, event: str) -> None:
        super().__init__(
            f"Invalid transition for asset {asset_id}: {current} -/-> {event}",
            details={"asset_id": asset_id, "current": current, "event": event},
        )
        self.asset_id = asset_id
        self.current = current
        self.event = event


class NotFoundError(EngineError):
    kind = ErrorKind.not_found

    def __init__(self, asset_id: str) -> None:
        super().__init__(f"Asset not found: {asset_id}", details={"asset_id": asset_id})
        self.asset_id = asset_id


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.validation: 400,
    ErrorKind.not_found: 404,
    ErrorKind.invalid_transition: 409,
    ErrorKind.processing: 422,
    ErrorKind.configuration: 500,
    ErrorKind.service: 502,
}


__all__ = [
    "ErrorKind",
    "EngineError",
    "ValidationError",
    "ProcessingError",
    "ServiceError",
    "ConfigurationError",
    "InvalidTransitionError",
    "NotFoundError",
    "HTTP_STATUS_BY_KIND",
]
