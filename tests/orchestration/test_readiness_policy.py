#!/usr/bin/env python3
"""
Tests for the bounded readiness poll, driven by a fake clock.
"""

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent.parent.parent))

from src.orchestration.errors import (
    ConfigurationError, OperationCancelled, PodOperationError, ReadinessTimeout, is_cancellation
)
from src.orchestration.readiness_policy import PollPolicy, poll_until


class FakeClock:

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class StatusSource:
    """Returns scripted values; exceptions in the script are raised."""

    def __init__(self, script, clock=None, fetch_cost=0.0):
        self.script = list(script)
        self.calls = 0
        self.clock = clock
        self.fetch_cost = fetch_cost

    async def __call__(self):
        self.calls += 1
        if self.clock is not None:
            self.clock.now += self.fetch_cost
        value = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(value, Exception):
            raise value
        return value


class TestPollUntil:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    def test_returns_first_ready_value(self, clock):
        source = StatusSource(["pending", "pending", "ready"])

        result = asyncio.run(poll_until(
            source, lambda value: value == "ready", PollPolicy(interval=3, timeout=30),
            clock=clock, sleep=clock.sleep
        ))

        assert result == "ready"
        assert source.calls == 3
        assert clock.sleeps == [3, 3]

    def test_transient_errors_keep_polling(self, clock):
        errors = []
        source = StatusSource([RuntimeError("connection reset"), "pending", RuntimeError("503"), "ready"])

        result = asyncio.run(poll_until(
            source, lambda value: value == "ready", PollPolicy(interval=3, timeout=30),
            clock=clock, sleep=clock.sleep, on_error=errors.append
        ))

        assert result == "ready"
        assert [str(e) for e in errors] == ["connection reset", "503"]

    @pytest.mark.parametrize("interval,timeout", [(3, 30), (7, 30), (3, 1), (10, 5)])
    def test_times_out_within_timeout_plus_interval(self, clock, interval, timeout):
        source = StatusSource(["pending"])
        start = clock.now

        with pytest.raises(ReadinessTimeout) as exc_info:
            asyncio.run(poll_until(
                source, lambda value: value == "ready", PollPolicy(interval=interval, timeout=timeout),
                clock=clock, sleep=clock.sleep
            ))

        elapsed = clock.now - start
        assert timeout <= elapsed <= timeout + interval
        assert isinstance(exc_info.value, OperationCancelled)
        assert exc_info.value.reason == "timeout"
        assert is_cancellation(exc_info.value)

    def test_slow_status_source_still_bounded(self, clock):
        source = StatusSource(["pending"], clock=clock, fetch_cost=2.0)
        start = clock.now

        with pytest.raises(ReadinessTimeout):
            asyncio.run(poll_until(
                source, lambda value: value == "ready", PollPolicy(interval=3, timeout=30),
                clock=clock, sleep=clock.sleep
            ))

        assert clock.now - start <= 33

    def test_errors_until_timeout_raise_timeout(self, clock):
        source = StatusSource([RuntimeError("forbidden")])

        with pytest.raises(ReadinessTimeout):
            asyncio.run(poll_until(
                source, lambda value: True, PollPolicy(interval=3, timeout=9),
                clock=clock, sleep=clock.sleep
            ))

        assert source.calls == 3

    def test_fatal_errors_propagate(self, clock):
        failure = PodOperationError("terminated", pod_name="worker-0", namespace="loadtest")
        source = StatusSource(["pending", failure])

        with pytest.raises(PodOperationError):
            asyncio.run(poll_until(
                source, lambda value: value == "ready", PollPolicy(interval=3, timeout=30),
                clock=clock, sleep=clock.sleep, fatal=(PodOperationError,)
            ))

        assert source.calls == 2

    def test_zero_timeout_fails_immediately(self, clock):
        source = StatusSource(["ready"])

        with pytest.raises(ReadinessTimeout):
            asyncio.run(poll_until(
                source, lambda value: True, PollPolicy(interval=3, timeout=0),
                clock=clock, sleep=clock.sleep
            ))

        assert source.calls == 0


class TestPollPolicy:

    def test_defaults(self):
        policy = PollPolicy()
        assert policy.interval == 3.0
        assert policy.timeout == 30.0

    def test_rejects_invalid_values(self):
        with pytest.raises(ConfigurationError):
            PollPolicy(interval=0)
        with pytest.raises(ConfigurationError):
            PollPolicy(timeout=-1)
