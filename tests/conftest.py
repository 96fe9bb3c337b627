#!/usr/bin/env python3
"""
Shared fakes for fleet tests: an in-memory cluster standing in for CoreV1Api,
a scripted exec stream and a scripted executor.
"""

import asyncio
import sys
import threading
import time
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

sys.path.append(str(Path(__file__).parent.parent))

from src.cluster.cluster_handle import ClusterHandle
from src.orchestration.fleet_observer import FleetObserver
from src.orchestration.models import CommandExecutionResult, CommandOutcome


def make_pod(name, namespace="loadtest", phase="Running", ready=True, keep_alive=60):
    """Minimal stand-in for a V1Pod as returned by read_namespaced_pod."""
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, namespace=namespace),
        spec=SimpleNamespace(containers=[
            SimpleNamespace(name=name, image="ubuntu:22.04", command=["sleep", str(keep_alive)])
        ]),
        status=SimpleNamespace(
            phase=phase,
            container_statuses=[SimpleNamespace(name=name, ready=ready)]
        )
    )


class FakeCluster:
    """In-memory replacement for the CoreV1Api pod calls the fleet uses."""

    def __init__(self):
        self.pods = {}
        self.never_ready = set()
        self.create_errors = {}
        self.delete_errors = {}
        self.created = []
        self.deleted = []
        self.delete_options = []
        self.create_delay = 0.0
        self._lock = threading.Lock()

    def create_namespaced_pod(self, namespace, body):
        name = body.metadata.name
        if self.create_delay:
            time.sleep(self.create_delay)
        if name in self.create_errors:
            raise self.create_errors[name]
        with self._lock:
            self.created.append(name)
            self.pods[name] = body
        return body

    def read_namespaced_pod(self, name, namespace, **kwargs):
        with self._lock:
            if name not in self.pods:
                raise ApiException(status=404, reason="Not Found")
        if name in self.never_ready:
            return make_pod(name, namespace, phase="Pending", ready=False)
        return make_pod(name, namespace)

    def delete_namespaced_pod(self, name, namespace, body=None, **kwargs):
        if name in self.delete_errors:
            raise self.delete_errors[name]
        with self._lock:
            self.deleted.append(name)
            self.delete_options.append(body)
            if name not in self.pods:
                raise ApiException(status=404, reason="Not Found")
            del self.pods[name]

    def connect_get_namespaced_pod_exec(self, *args, **kwargs):
        raise AssertionError("exec must go through kubernetes.stream.stream")


class FakeWSClient:
    """Scripted exec stream mimicking kubernetes.stream.ws_client.WSClient."""

    def __init__(self, stdout=(), stderr=(), returncode=0, hang=False, error=None, status_error=None):
        self._stdout = list(stdout)
        self._stderr = list(stderr)
        self._returncode = returncode
        self._hang = hang
        self._error = error
        self._status_error = status_error
        self._open = True
        self.closed = False

    def is_open(self):
        return self._open

    def update(self, timeout=0):
        if self._error is not None:
            raise self._error
        if self._hang:
            time.sleep(0.01)
            return
        if not self._stdout and not self._stderr:
            self._open = False

    def peek_stdout(self, timeout=0):
        return bool(self._stdout)

    def read_stdout(self, timeout=None):
        return self._stdout.pop(0)

    def peek_stderr(self, timeout=0):
        return bool(self._stderr)

    def read_stderr(self, timeout=None):
        return self._stderr.pop(0)

    @property
    def returncode(self):
        if self._open:
            return None
        if self._status_error is not None:
            raise self._status_error
        return self._returncode

    def close(self):
        self._open = False
        self.closed = True


class ScriptedExecutor:
    """Executor double: answers every command with 'ok' unless told otherwise."""

    def __init__(self, delay=0.0, failing_pods=(), failing_commands=()):
        self.delay = delay
        self.failing_pods = set(failing_pods)
        self.failing_commands = tuple(failing_commands)
        self.calls = []

    async def execute(self, pod, command, timeout=None):
        self.calls.append((pod.name, command))
        if self.delay:
            await asyncio.sleep(self.delay)

        failed = pod.name in self.failing_pods or any(part in command for part in self.failing_commands)
        return CommandExecutionResult(
            pod_name=pod.name,
            command=command,
            stdout="" if failed else "ok\n",
            stderr="boom\n" if failed else "",
            outcome=CommandOutcome.FAILED if failed else CommandOutcome.SUCCEEDED,
            reason="exit code 1" if failed else None,
            exit_code=1 if failed else 0
        )


class RecordingObserver(FleetObserver):

    def __init__(self):
        self.events = []

    def worker_created(self, pod_name):
        self.events.append(("created", pod_name))

    def worker_ready(self, outcome):
        self.events.append(("ready", outcome.name))

    def worker_failed(self, outcome):
        self.events.append(("failed", outcome.name))

    def action_done(self, action):
        self.events.append(("action", action.pod_name, action.name))

    def command_finished(self, result):
        self.events.append(("command", result.pod_name, result.outcome))

    def cleanup_requested(self, pod_name):
        self.events.append(("cleanup", pod_name))

    def cleanup_failed(self, pod_name, error):
        self.events.append(("cleanup_failed", pod_name))

    def named(self, kind):
        return [event for event in self.events if event[0] == kind]


@pytest.fixture
def handle():
    return ClusterHandle(api_client=MagicMock(), namespace="loadtest", context_name="test-ctx")


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def pod_factory():
    return make_pod


@pytest.fixture
def ws_client_factory():
    return FakeWSClient


@pytest.fixture
def executor_factory():
    return ScriptedExecutor
