#!/usr/bin/env python3
"""
Fleet orchestration for distributed load-test workers.
Brings up N worker pods in parallel, fans remote commands out to every ready
worker and tears the fleet down. Every worker gets exactly one outcome; one
worker failing never aborts the others.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Union

from src.cluster.health_probe import check_connection
from src.orchestration.errors import (
    ClusterConnectionError, ConfigurationError, is_cancellation
)
from src.orchestration.fleet_metrics import CLEANUP_FAILURES, READY_WORKERS
from src.orchestration.fleet_observer import FleetObserver, LoggingFleetObserver
from src.orchestration.load_test_plan import RemoteCommand
from src.orchestration.models import (
    ActionDone, CommandExecutionResult, CommandOutcome, WorkerOutcome,
    WorkerPodDescriptor, WorkerSpec
)
from src.orchestration.pod_lifecycle import PodLifecycleManager
from src.orchestration.remote_executor import RemoteExecutor

logger = logging.getLogger(__name__)

CommandSource = Union[str, Callable[[WorkerPodDescriptor], str]]
StepSource = Union[Sequence[RemoteCommand], Callable[[WorkerPodDescriptor], Sequence[RemoteCommand]]]


@dataclass(frozen=True)
class QuorumPolicy:
    """How many ready workers a fleet needs before it is usable."""
    min_ready: Optional[int] = None
    min_fraction: float = 1.0

    @classmethod
    def all(cls) -> 'QuorumPolicy':
        return cls()

    @classmethod
    def at_least(cls, count: int) -> 'QuorumPolicy':
        if count < 1:
            raise ConfigurationError(f"Quorum must require at least one worker, got {count}")
        return cls(min_ready=count)

    @classmethod
    def fraction(cls, value: float) -> 'QuorumPolicy':
        if not 0 < value <= 1:
            raise ConfigurationError(f"Quorum fraction must be in (0, 1], got {value}")
        return cls(min_fraction=value)

    @classmethod
    def parse(cls, value) -> 'QuorumPolicy':
        """Accepts 'all', a worker count or a fraction such as 0.5."""
        if value is None or value == 'all':
            return cls.all()
        if isinstance(value, bool):
            raise ConfigurationError(f"Invalid quorum value: {value!r}")
        if isinstance(value, int):
            return cls.at_least(value)
        if isinstance(value, float):
            return cls.fraction(value)
        if isinstance(value, str):
            try:
                return cls.parse(float(value) if '.' in value else int(value))
            except ValueError:
                pass
        raise ConfigurationError(f"Invalid quorum value: {value!r}")

    def required(self, total: int) -> int:
        if self.min_ready is not None:
            return self.min_ready
        return max(1, math.ceil(total * self.min_fraction))

    def is_met(self, ready: int, total: int) -> bool:
        return total > 0 and ready >= self.required(total)


class FleetOrchestrator:
    def __init__(self, lifecycle: PodLifecycleManager,
                 executor: RemoteExecutor,
                 observer: Optional[FleetObserver] = None,
                 quorum: Optional[QuorumPolicy] = None,
                 ready_timeout: Optional[float] = None,
                 command_timeout: Optional[float] = None):
        self.lifecycle = lifecycle
        self.executor = executor
        self.cache = lifecycle.cache
        self.handle = lifecycle.handle
        self.observer = observer or LoggingFleetObserver()
        self.quorum = quorum or QuorumPolicy.all()
        self.ready_timeout = ready_timeout
        self.command_timeout = command_timeout

    async def ensure_cluster_reachable(self, attempts: int = 3, delay: float = 2.0) -> bool:
        """Health probe with the retry the probe itself does not do."""
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(check_connection, self.handle)
            except ClusterConnectionError as e:
                last_error = e
                logger.warning(f"Cluster health check attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(delay)
        raise last_error

    def workers(self) -> List[WorkerPodDescriptor]:
        return sorted(self.cache.list(), key=lambda descriptor: descriptor.name)

    def ready_workers(self) -> List[WorkerPodDescriptor]:
        return [descriptor for descriptor in self.workers() if descriptor.is_ready]

    def quorum_met(self, outcomes: Sequence[WorkerOutcome]) -> bool:
        ready = sum(1 for outcome in outcomes if outcome.succeeded)
        return self.quorum.is_met(ready, len(outcomes))

    async def bring_up_fleet(self, specs: Sequence[WorkerSpec],
                             reuse_ready: bool = True) -> List[WorkerOutcome]:
        """Create and await every worker concurrently; one outcome per spec, in order."""
        logger.info(f"Bringing up fleet of {len(specs)} workers in {self.handle.namespace}")

        results = await asyncio.gather(
            *(self._bring_up_worker(spec, reuse_ready) for spec in specs),
            return_exceptions=True
        )

        outcomes = []
        for spec, result in zip(specs, results):
            if isinstance(result, WorkerOutcome):
                outcome = result
            else:
                outcome = WorkerOutcome(name=spec.name, descriptor=self.cache.get(spec.name), error=result)

            if outcome.succeeded:
                self.observer.worker_ready(outcome)
            else:
                self.observer.worker_failed(outcome)
            outcomes.append(outcome)

        ready = sum(1 for outcome in outcomes if outcome.succeeded)
        READY_WORKERS.set(len(self.ready_workers()))
        logger.info(f"Fleet bring-up finished: {ready}/{len(outcomes)} workers ready")
        return outcomes

    async def _bring_up_worker(self, spec: WorkerSpec, reuse_ready: bool) -> WorkerOutcome:
        namespace = self.handle.namespace
        cached = self.cache.get(spec.name)
        if reuse_ready and cached is not None and cached.is_ready:
            logger.info(f"Reusing ready worker pod {namespace}/{spec.name}")
            return WorkerOutcome(name=spec.name, descriptor=cached)

        try:
            await self.lifecycle.create_worker(namespace, spec.name, spec.keep_alive_seconds, spec.image)
            self.observer.worker_created(spec.name)
            descriptor = await self.lifecycle.await_ready(spec.name, timeout=self.ready_timeout, namespace=namespace)
        except Exception as e:
            return WorkerOutcome(name=spec.name, descriptor=self.cache.get(spec.name), error=e)

        return WorkerOutcome(name=spec.name, descriptor=descriptor)

    async def dispatch(self, command: CommandSource,
                       timeout: Optional[float] = None) -> Dict[str, CommandExecutionResult]:
        """Run a command on every ready worker; results keyed by pod name."""
        timeout = self.command_timeout if timeout is None else timeout
        pods = self.ready_workers()
        commands = [command(pod) if callable(command) else command for pod in pods]

        results = await asyncio.gather(
            *(self.executor.execute(pod, cmd, timeout=timeout) for pod, cmd in zip(pods, commands)),
            return_exceptions=True
        )

        collected = {}
        for pod, cmd, result in zip(pods, commands, results):
            if isinstance(result, BaseException):
                result = self._failed_result(pod.name, cmd, result)
            self.observer.command_finished(result)
            collected[pod.name] = result
        return collected

    async def run_steps(self, steps: StepSource,
                        timeout: Optional[float] = None) -> Dict[str, List[CommandExecutionResult]]:
        """Run named steps in order on each ready worker, workers in parallel.

        A worker stops at its first failed step; the others carry on.
        """
        timeout = self.command_timeout if timeout is None else timeout
        pods = self.ready_workers()

        results = await asyncio.gather(
            *(self._run_worker_steps(pod, steps, timeout) for pod in pods),
            return_exceptions=True
        )

        collected = {}
        for pod, result in zip(pods, results):
            if isinstance(result, BaseException):
                # the step list itself could not be built for this worker
                result = [self._failed_result(pod.name, '', result)]
            collected[pod.name] = result
        return collected

    async def _run_worker_steps(self, pod: WorkerPodDescriptor, steps: StepSource,
                                timeout: Optional[float]) -> List[CommandExecutionResult]:
        if callable(steps):
            steps = steps(pod)
        results = []
        for step in steps:
            started = time.monotonic()
            try:
                result = await self.executor.execute(pod, step.command, timeout=timeout)
            except Exception as e:
                result = self._failed_result(pod.name, step.command, e)
            self.observer.command_finished(result)
            results.append(result)
            if not result.succeeded:
                logger.error(f"[{pod.name}] step '{step.display_name}' failed: {result.reason}")
                break
            self.observer.action_done(ActionDone(
                pod_name=pod.name,
                name=step.display_name,
                duration_seconds=time.monotonic() - started
            ))
        return results

    async def teardown_fleet(self) -> List[str]:
        """Best-effort delete of every cached pod. Returns the pods that failed."""
        pods = self.cache.list()
        if not pods:
            return []

        logger.info(f"Tearing down {len(pods)} worker pods")
        results = await asyncio.gather(
            *(self.lifecycle.delete_worker(pod.namespace, pod.name) for pod in pods),
            return_exceptions=True
        )

        failed = []
        for pod, result in zip(pods, results):
            if isinstance(result, BaseException):
                CLEANUP_FAILURES.inc()
                self.observer.cleanup_failed(pod.name, result)
                failed.append(pod.name)
            else:
                self.observer.cleanup_requested(pod.name)

        READY_WORKERS.set(len(self.ready_workers()))
        return failed

    async def retain_healthy(self) -> List[str]:
        """Re-check cached pods; keep the ready ones and clean up the rest."""
        pods = self.cache.list()
        refreshed = await asyncio.gather(
            *(self.lifecycle.refresh(pod.name, pod.namespace) for pod in pods),
            return_exceptions=True
        )

        kept = []
        stale = []
        for pod, result in zip(pods, refreshed):
            if isinstance(result, BaseException):
                logger.warning(f"Could not refresh worker pod {pod.name}: {result}")
                stale.append(pod)
            elif result is not None and result.is_ready:
                kept.append(pod.name)
            elif result is not None:
                stale.append(pod)

        cleanups = await asyncio.gather(
            *(self.lifecycle.delete_worker(pod.namespace, pod.name) for pod in stale),
            return_exceptions=True
        )
        for pod, result in zip(stale, cleanups):
            if isinstance(result, BaseException):
                CLEANUP_FAILURES.inc()
                self.observer.cleanup_failed(pod.name, result)
            else:
                self.observer.cleanup_requested(pod.name)

        READY_WORKERS.set(len(self.ready_workers()))
        logger.info(f"Retained {len(kept)} healthy worker pods, cleaned up {len(stale)}")
        return kept

    @staticmethod
    def _failed_result(pod_name: str, command: str, error: BaseException) -> CommandExecutionResult:
        if is_cancellation(error):
            reason = f"cancelled: {error}" if str(error) else "cancelled"
        else:
            reason = str(error)
        return CommandExecutionResult(
            pod_name=pod_name,
            command=command,
            stdout='',
            stderr='',
            outcome=CommandOutcome.FAILED,
            reason=reason
        )
