#!/usr/bin/env python3
"""
Runs shell commands inside worker pods over the Kubernetes exec stream.
"""

import asyncio
import logging
import threading
import time
from typing import NamedTuple, Optional

import yaml
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from websocket import WebSocketException

from src.cluster.cluster_handle import ClusterHandle
from src.orchestration.errors import OperationCancelled, RemoteCommandError
from src.orchestration.fleet_metrics import REMOTE_COMMAND_DURATION, REMOTE_COMMANDS
from src.orchestration.models import (
    CommandExecutionResult, CommandOutcome, WorkerPodDescriptor
)

logger = logging.getLogger(__name__)

SHELL = ['/bin/sh', '-c']


class ExecOutput(NamedTuple):
    stdout: str
    stderr: str
    exit_code: Optional[int]


class RemoteExecutor:
    def __init__(self, handle: ClusterHandle, read_timeout: float = 1.0):
        self.handle = handle
        self.read_timeout = read_timeout
        self.core_v1 = handle.core_v1

    async def run(self, pod: WorkerPodDescriptor, command: str,
                  timeout: Optional[float] = None) -> ExecOutput:
        """Run ``command`` in the pod's shell and wait for the stream to close.

        Raises ``RemoteCommandError`` when the stream cannot be opened or breaks,
        and ``OperationCancelled`` when ``timeout`` expires first. Cancelling the
        awaiting task stops reading and propagates; whatever the remote process
        does afterwards is not tracked.
        """
        stop = threading.Event()
        reader = asyncio.to_thread(self._stream_command, pod, command, stop)
        try:
            if timeout is None:
                return await reader
            return await asyncio.wait_for(reader, timeout)
        except asyncio.TimeoutError as e:
            raise OperationCancelled(
                f"command {command!r} on {pod.namespace}/{pod.name} exceeded {timeout}s",
                reason="timeout"
            ) from e
        finally:
            stop.set()

    async def execute(self, pod: WorkerPodDescriptor, command: str,
                      timeout: Optional[float] = None) -> CommandExecutionResult:
        """Like ``run`` but reports failures as a result instead of raising."""
        started = time.monotonic()
        stdout, stderr, exit_code, reason = "", "", None, None

        try:
            stdout, stderr, exit_code = await self.run(pod, command, timeout=timeout)
        except OperationCancelled as e:
            reason = f"cancelled: {e}"
        except RemoteCommandError as e:
            reason = str(e)
        else:
            if exit_code not in (None, 0):
                reason = f"exit code {exit_code}"

        duration = time.monotonic() - started
        outcome = CommandOutcome.SUCCEEDED if reason is None else CommandOutcome.FAILED
        REMOTE_COMMANDS.labels(outcome=outcome.value).inc()
        REMOTE_COMMAND_DURATION.observe(duration)

        return CommandExecutionResult(
            pod_name=pod.name,
            command=command,
            stdout=stdout,
            stderr=stderr,
            outcome=outcome,
            reason=reason,
            exit_code=exit_code,
            duration_seconds=duration
        )

    def _stream_command(self, pod: WorkerPodDescriptor, command: str,
                        stop: threading.Event) -> ExecOutput:
        logger.debug(f"Executing command in pod {pod.namespace}/{pod.name}: {command}")
        try:
            resp = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                pod.name,
                pod.namespace,
                command=SHELL + [command],
                container=pod.name,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False
            )
        except (ApiException, WebSocketException, OSError) as e:
            raise RemoteCommandError(
                f"{e} failed executing command {command} on {pod.namespace}/{pod.name}",
                pod_name=pod.name, namespace=pod.namespace, command=command
            ) from e

        stdout = []
        stderr = []
        try:
            while resp.is_open() and not stop.is_set():
                resp.update(timeout=self.read_timeout)
                if resp.peek_stdout():
                    stdout.append(resp.read_stdout())
                if resp.peek_stderr():
                    stderr.append(resp.read_stderr())

            if stop.is_set():
                return ExecOutput(''.join(stdout), ''.join(stderr), None)

            if resp.peek_stdout():
                stdout.append(resp.read_stdout())
            if resp.peek_stderr():
                stderr.append(resp.read_stderr())
            try:
                exit_code = resp.returncode
            except (TypeError, KeyError, ValueError, IndexError, yaml.YAMLError) as e:
                raise RemoteCommandError(
                    f"stream closed without an exit status for command {command} on {pod.namespace}/{pod.name}",
                    pod_name=pod.name, namespace=pod.namespace, command=command
                ) from e
        except (WebSocketException, OSError) as e:
            raise RemoteCommandError(
                f"{e} interrupted command {command} on {pod.namespace}/{pod.name}",
                pod_name=pod.name, namespace=pod.namespace, command=command
            ) from e
        finally:
            resp.close()

        return ExecOutput(''.join(stdout), ''.join(stderr), exit_code)
