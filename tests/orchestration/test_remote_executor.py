#!/usr/bin/env python3
"""
Tests for remote command execution over a scripted exec stream.
"""

import asyncio
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from kubernetes.client.rest import ApiException
from websocket import WebSocketConnectionClosedException

sys.path.append(str(Path(__file__).parent.parent.parent))

from src.orchestration.errors import OperationCancelled, RemoteCommandError
from src.orchestration.models import CommandOutcome, PodStatus, WorkerPodDescriptor
from src.orchestration.remote_executor import RemoteExecutor


@pytest.fixture
def pod():
    return WorkerPodDescriptor(
        name="jmeter-worker-0",
        namespace="loadtest",
        image="ubuntu:22.04",
        command=["sleep", "60"],
        keep_alive_seconds=60,
        status=PodStatus.READY
    )


@pytest.fixture
def executor(handle):
    return RemoteExecutor(handle, read_timeout=0.01)


class TestRemoteExecutorRun:

    def test_captures_stdout_and_stderr_separately(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(stdout=["o", "k\n"], stderr=["warning\n"])

        with patch("src.orchestration.remote_executor.stream", return_value=ws) as mock_stream:
            stdout, stderr, exit_code = asyncio.run(executor.run(pod, "echo ok"))

        assert stdout == "ok\n"
        assert stderr == "warning\n"
        assert exit_code == 0
        assert ws.closed

        args, kwargs = mock_stream.call_args
        assert args[1:] == ("jmeter-worker-0", "loadtest")
        assert kwargs["command"] == ["/bin/sh", "-c", "echo ok"]
        assert kwargs["container"] == "jmeter-worker-0"
        assert kwargs["stdin"] is False
        assert kwargs["tty"] is False
        assert kwargs["stdout"] is True
        assert kwargs["stderr"] is True

    def test_stream_setup_failure_is_wrapped(self, executor, pod):
        cause = ApiException(status=403, reason="Forbidden")

        with patch("src.orchestration.remote_executor.stream", side_effect=cause):
            with pytest.raises(RemoteCommandError) as exc_info:
                asyncio.run(executor.run(pod, "echo ok"))

        error = exc_info.value
        assert error.__cause__ is cause
        assert error.command == "echo ok"
        assert "echo ok" in str(error)
        assert "loadtest/jmeter-worker-0" in str(error)

    def test_interrupted_stream_is_wrapped(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(error=WebSocketConnectionClosedException("socket closed"))

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            with pytest.raises(RemoteCommandError) as exc_info:
                asyncio.run(executor.run(pod, "sleep 100"))

        assert isinstance(exc_info.value.__cause__, WebSocketConnectionClosedException)
        assert ws.closed

    def test_stream_closed_without_exit_status_is_wrapped(self, executor, pod, ws_client_factory):
        # an empty error channel makes WSClient.returncode index into None
        ws = ws_client_factory(
            stdout=["partial\n"],
            status_error=TypeError("'NoneType' object is not subscriptable")
        )

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            with pytest.raises(RemoteCommandError) as exc_info:
                asyncio.run(executor.run(pod, "echo ok"))

        assert isinstance(exc_info.value.__cause__, TypeError)
        assert "without an exit status" in str(exc_info.value)
        assert exc_info.value.command == "echo ok"
        assert ws.closed

    def test_timeout_is_cancellation(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(hang=True)

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            with pytest.raises(OperationCancelled) as exc_info:
                asyncio.run(executor.run(pod, "sleep 100", timeout=0.1))

        assert exc_info.value.reason == "timeout"
        # the reader thread notices the stop signal and closes the stream
        assert ws.closed

    def test_task_cancellation_propagates(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(hang=True)

        async def scenario():
            task = asyncio.ensure_future(executor.run(pod, "sleep 100"))
            await asyncio.sleep(0.05)
            task.cancel()
            await task

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            with pytest.raises(asyncio.CancelledError):
                asyncio.run(scenario())

        assert ws.closed


class TestRemoteExecutorExecute:

    def test_success_result(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(stdout=["ok\n"])

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            result = asyncio.run(executor.execute(pod, "echo ok"))

        assert result.pod_name == "jmeter-worker-0"
        assert result.command == "echo ok"
        assert result.stdout == "ok\n"
        assert result.outcome == CommandOutcome.SUCCEEDED
        assert result.reason is None

    def test_non_zero_exit_is_failure(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(stderr=["no such file\n"], returncode=2)

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            result = asyncio.run(executor.execute(pod, "cat missing"))

        assert result.outcome == CommandOutcome.FAILED
        assert result.exit_code == 2
        assert result.reason == "exit code 2"
        assert result.stderr == "no such file\n"

    def test_transport_failure_is_failure_result(self, executor, pod):
        with patch("src.orchestration.remote_executor.stream",
                   side_effect=ApiException(status=500, reason="upgrade failed")):
            result = asyncio.run(executor.execute(pod, "echo ok"))

        assert result.outcome == CommandOutcome.FAILED
        assert "upgrade failed" in result.reason

    def test_malformed_exit_status_is_failure_result(self, executor, pod, ws_client_factory):
        ws = ws_client_factory(status_error=yaml.YAMLError("bad status payload"))

        with patch("src.orchestration.remote_executor.stream", return_value=ws):
            result = asyncio.run(executor.execute(pod, "echo ok"))

        assert result.outcome == CommandOutcome.FAILED
        assert "without an exit status" in result.reason

    def test_timeout_is_cancelled_failure(self, executor, pod, ws_client_factory):
        with patch("src.orchestration.remote_executor.stream", return_value=ws_client_factory(hang=True)):
            result = asyncio.run(executor.execute(pod, "sleep 100", timeout=0.05))

        assert result.outcome == CommandOutcome.FAILED
        assert result.reason.startswith("cancelled")
