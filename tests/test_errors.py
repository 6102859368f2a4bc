from __future__ import annotations

import pytest

from video_engine.core.errors import (
    HTTP_STATUS_BY_KIND,
    ConfigurationError,
    EngineError,
    ErrorKind,
    InvalidTransitionError,
    NotFoundError,
    ProcessingError,
    ServiceError,
    ValidationError,
)


@pytest.mark.parametrize(
    "error, kind, status",
    [
        (ValidationError("Invalid file type", field="file"), ErrorKind.validation, 400),
        (ProcessingError("Failed to generate thumbnail"), ErrorKind.processing, 422),
        (ServiceError("MediaConvert create_job rejected"), ErrorKind.service, 502),
        (ConfigurationError("Missing AWS settings"), ErrorKind.configuration, 500),
        (InvalidTransitionError("a1", "ready", "failed"), ErrorKind.invalid_transition, 409),
        (NotFoundError("a1"), ErrorKind.not_found, 404),
    ],
)
def test_every_variant_has_kind_and_status(error, kind, status):
    assert isinstance(error, EngineError)
    assert error.kind == kind
    assert HTTP_STATUS_BY_KIND[kind] == status


def test_payload_shape_is_uniform():
    payload = ValidationError("File size exceeds limit", field="file", details={"max_size_bytes": 10}).to_dict()

    assert set(payload) == {"kind", "message", "details", "timestamp"}
    assert payload["kind"] == "validation"
    assert payload["details"] == {"max_size_bytes": 10, "field": "file"}
    assert payload["timestamp"].endswith("+00:00")


def test_invalid_transition_details():
    error = InvalidTransitionError("a1", "ready", "failed")
    assert error.details == {"asset_id": "a1", "current": "ready", "event": "failed"}
    assert "a1" in error.message
