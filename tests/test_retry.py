from __future__ import annotations

import asyncio

import pytest

from video_engine.core.errors import ServiceError
from video_engine.core.retry import TransientProviderError, with_retry


class _Flaky:
    def __init__(self, failures, exc_factory=lambda: TransientProviderError("throttled")):
        self.failures = failures
        self.exc_factory = exc_factory
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_factory()
        return "job-42"


def _recording_sleep(delays):
    async def sleep(delay):
        delays.append(delay)

    return sleep


def test_retries_with_exponential_backoff():
    delays = []
    fn = _Flaky(failures=2)

    result = asyncio.run(with_retry(fn, operation="submit_job", sleep=_recording_sleep(delays)))

    assert result == "job-42"
    assert fn.calls == 3
    assert delays == [0.5, 1.0]


def test_exhausted_retries_raise_service_error():
    delays = []
    fn = _Flaky(failures=10, exc_factory=lambda: ConnectionError("reset by peer"))

    with pytest.raises(ServiceError) as excinfo:
        asyncio.run(with_retry(fn, operation="poll_job", attempts=3, sleep=_recording_sleep(delays)))

    assert fn.calls == 3
    assert delays == [0.5, 1.0]
    assert excinfo.value.details == {"operation": "poll_job", "attempts": 3, "cause": "reset by peer"}
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_non_transient_errors_propagate_immediately():
    fn = _Flaky(failures=1, exc_factory=lambda: ServiceError("rejected"))

    with pytest.raises(ServiceError, match="rejected"):
        asyncio.run(with_retry(fn, operation="submit_job", sleep=_recording_sleep([])))
    assert fn.calls == 1
