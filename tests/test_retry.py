"""Tests for error classification and retry with backoff."""

import asyncio

import pytest

from treemirror.errors import (
    NoData,
    NotFound,
    StoreError,
    TransferFailed,
    is_transient_error,
)
from treemirror.retry import calculate_backoff_with_jitter, retry_with_backoff


class TestClassification:
    @pytest.mark.parametrize("error", [
        StoreError("throttled"),
        TimeoutError(),
        ConnectionResetError("reset"),
        RuntimeError("503 Service Unavailable"),
        RuntimeError("rate limit exceeded"),
    ])
    def test_transient(self, error):
        assert is_transient_error(error)

    @pytest.mark.parametrize("error", [
        StoreError("bad key", transient=False),
        PermissionError("permission denied"),
        RuntimeError("403 Forbidden (timeout while checking)"),
        TransferFailed("k", "checksum mismatch"),
        ValueError("nope"),
    ])
    def test_not_transient(self, error):
        assert not is_transient_error(error)

    def test_no_data_is_not_found(self):
        error = NoData("/", "empty")

        assert isinstance(error, NotFound)
        assert error.path == "/"


class TestBackoff:
    def test_grows_and_caps(self):
        assert calculate_backoff_with_jitter(0, initial_backoff=1, jitter_factor=0) == 1
        assert calculate_backoff_with_jitter(3, initial_backoff=1, jitter_factor=0) == 8
        assert calculate_backoff_with_jitter(20, initial_backoff=1, max_backoff=30, jitter_factor=0) == 30

    def test_jitter_bounds(self):
        for _ in range(50):
            assert 0.75 <= calculate_backoff_with_jitter(0, initial_backoff=1, jitter_factor=0.25) <= 1.25


class TestRetry:
    def test_succeeds_after_transient_failures(self):
        calls = []

        async def flaky(value):
            calls.append(value)
            if len(calls) < 3:
                raise StoreError("connection reset")
            return value * 2

        result = asyncio.run(retry_with_backoff(flaky, 21, max_retries=3, initial_backoff=0))

        assert result == 42
        assert len(calls) == 3

    def test_gives_up(self):
        calls = []

        async def always_down():
            calls.append(1)
            raise StoreError("503")

        with pytest.raises(StoreError):
            asyncio.run(retry_with_backoff(always_down, max_retries=2, initial_backoff=0))
        assert len(calls) == 3

    def test_fatal_raised_immediately(self):
        calls = []

        async def denied():
            calls.append(1)
            raise StoreError("401 unauthorized", transient=False)

        with pytest.raises(StoreError):
            asyncio.run(retry_with_backoff(denied, max_retries=5, initial_backoff=0))
        assert len(calls) == 1
