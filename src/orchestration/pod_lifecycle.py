#!/usr/bin/env python3
"""
Worker pod lifecycle: create, wait until ready, delete.
Every cluster call runs in a worker thread so many pods can be driven
concurrently from one event loop; the pod cache is updated after each call.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from src.cluster.cluster_handle import ClusterHandle
from src.orchestration.errors import PodOperationError, ReadinessTimeout
from src.orchestration.fleet_metrics import (
    PODS_CREATED, PODS_DELETED, READY_TIMEOUTS, READY_WAIT
)
from src.orchestration.models import PodStatus, WorkerPodDescriptor
from src.orchestration.pod_cache import PodCache
from src.orchestration.readiness_policy import PollPolicy, poll_until

logger = logging.getLogger(__name__)

DEFAULT_IMAGE = "ubuntu:22.04"
WORKER_APP_LABEL = "jmeter-pod"
TERMINAL_PHASES = ('Failed', 'Succeeded')


def is_pod_ready(pod) -> bool:
    """Phase Running and no container reporting not-ready."""
    status = pod.status
    if status is None or status.phase != 'Running':
        return False
    return all(container_status.ready for container_status in status.container_statuses or [])


def pod_status_of(pod) -> PodStatus:
    phase = pod.status.phase if pod.status else None
    if phase in TERMINAL_PHASES:
        return PodStatus.FAILED
    if is_pod_ready(pod):
        return PodStatus.READY
    if phase == 'Running':
        return PodStatus.RUNNING
    return PodStatus.PENDING


class PodLifecycleManager:
    def __init__(self, handle: ClusterHandle,
                 cache: Optional[PodCache] = None,
                 poll_policy: Optional[PollPolicy] = None,
                 image: str = DEFAULT_IMAGE,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.handle = handle
        self.cache = cache if cache is not None else PodCache()
        self.poll_policy = poll_policy or PollPolicy()
        self.image = image
        self.clock = clock
        self.sleep = sleep
        self.core_v1 = handle.core_v1

    def build_pod_manifest(self, namespace: str, name: str, keep_alive_seconds: int,
                           image: Optional[str] = None) -> client.V1Pod:
        """Single-container pod that sleeps long enough to receive exec commands."""
        return client.V1Pod(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels={
                    'app': WORKER_APP_LABEL,
                    'fleet': self.handle.pod_prefix
                }
            ),
            spec=client.V1PodSpec(
                # A restarted worker has lost its uploaded files and results
                restart_policy='Never',
                containers=[
                    client.V1Container(
                        name=name,
                        image=image or self.image,
                        image_pull_policy='IfNotPresent',
                        command=['sleep', str(keep_alive_seconds)]
                    )
                ]
            )
        )

    async def create_worker(self, namespace: str, name: str, keep_alive_seconds: int,
                            image: Optional[str] = None) -> WorkerPodDescriptor:
        """Submit the pod and return without waiting for it to be scheduled."""
        manifest = self.build_pod_manifest(namespace, name, keep_alive_seconds, image)
        container = manifest.spec.containers[0]
        descriptor = WorkerPodDescriptor(
            name=name,
            namespace=namespace,
            image=container.image,
            command=list(container.command),
            keep_alive_seconds=keep_alive_seconds,
            status=PodStatus.PENDING
        )
        self.cache.put(name, descriptor)

        creation = asyncio.ensure_future(asyncio.to_thread(
            self.core_v1.create_namespaced_pod,
            namespace=namespace,
            body=manifest
        ))
        try:
            await asyncio.shield(creation)
        except asyncio.CancelledError:
            # request already in flight: wait for it so the cache matches the cluster
            await asyncio.wait([creation])
            if creation.cancelled() or creation.exception() is not None:
                self.cache.remove(name)
            else:
                PODS_CREATED.inc()
                logger.warning(f"Pod {namespace}/{name} created while its bring-up was cancelled")
            raise
        except ApiException as e:
            self.cache.remove(name)
            logger.error(f"Failed to create pod {namespace}/{name}: {e.status} {e.reason}")
            raise PodOperationError(
                f"failed to create pod {namespace}/{name}: {e.reason}",
                pod_name=name, namespace=namespace, status=e.status
            ) from e
        except Exception:
            self.cache.remove(name)
            raise

        PODS_CREATED.inc()
        logger.info(f"Created worker pod {namespace}/{name} (keep-alive {keep_alive_seconds}s)")
        return descriptor

    async def await_ready(self, name: str, timeout: Optional[float] = None,
                          namespace: Optional[str] = None) -> WorkerPodDescriptor:
        """Poll the pod until it is running with all containers ready.

        Read errors while polling are logged and retried; only the deadline
        (``ReadinessTimeout``) or a pod that terminated ends the wait early.
        """
        namespace = namespace or self.handle.namespace
        policy = PollPolicy(
            interval=self.poll_policy.interval,
            timeout=self.poll_policy.timeout if timeout is None else timeout
        )
        started = self.clock()

        async def fetch():
            pod = await asyncio.to_thread(
                self.core_v1.read_namespaced_pod,
                name=name,
                namespace=namespace,
                _request_timeout=policy.interval
            )
            status = pod_status_of(pod)
            if status == PodStatus.FAILED:
                raise PodOperationError(
                    f"pod {namespace}/{name} terminated in phase {pod.status.phase}",
                    pod_name=name, namespace=namespace
                )
            self._record(pod, status)
            return pod

        def on_error(e: Exception):
            logger.error(f"Error checking pod {namespace}/{name}: {e}")

        try:
            pod = await poll_until(
                fetch, is_pod_ready, policy,
                clock=self.clock,
                sleep=self.sleep,
                on_error=on_error,
                fatal=(PodOperationError,),
                description=f"pod {namespace}/{name}"
            )
        except ReadinessTimeout as e:
            READY_TIMEOUTS.inc()
            self.cache.update(name, message=str(e), observed_at=datetime.now())
            logger.warning(f"Pod {namespace}/{name} readiness timeout after {policy.timeout}s")
            raise
        except PodOperationError as e:
            self.cache.update(name, status=PodStatus.FAILED, message=str(e), observed_at=datetime.now())
            raise

        READY_WAIT.observe(self.clock() - started)
        return self._record(pod, PodStatus.READY)

    async def delete_worker(self, namespace: str, name: str):
        """Request background deletion; does not wait for the pod to go away."""
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespaced_pod,
                name=name,
                namespace=namespace,
                body=client.V1DeleteOptions(propagation_policy='Background')
            )
        except ApiException as e:
            if e.status != 404:
                raise PodOperationError(
                    f"failed to delete pod {namespace}/{name}: {e.reason}",
                    pod_name=name, namespace=namespace, status=e.status
                ) from e
            logger.info(f"Pod {namespace}/{name} already gone")

        self.cache.remove(name)
        PODS_DELETED.inc()

    async def refresh(self, name: str, namespace: Optional[str] = None) -> Optional[WorkerPodDescriptor]:
        """Re-read a pod and update its cached status. None if it no longer exists."""
        namespace = namespace or self.handle.namespace
        try:
            pod = await asyncio.to_thread(
                self.core_v1.read_namespaced_pod,
                name=name,
                namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                self.cache.remove(name)
                return None
            raise PodOperationError(
                f"failed to read pod {namespace}/{name}: {e.reason}",
                pod_name=name, namespace=namespace, status=e.status
            ) from e

        return self._record(pod, pod_status_of(pod))

    def _record(self, pod, status: PodStatus) -> WorkerPodDescriptor:
        name = pod.metadata.name
        updated = self.cache.update(name, status=status, message=None, observed_at=datetime.now())
        if updated is not None:
            return updated

        descriptor = self._descriptor_from_pod(pod, status)
        self.cache.put(name, descriptor)
        return descriptor

    @staticmethod
    def _descriptor_from_pod(pod, status: PodStatus) -> WorkerPodDescriptor:
        containers: List = pod.spec.containers if pod.spec and pod.spec.containers else []
        command = list(containers[0].command or []) if containers else []
        keep_alive = 0
        if len(command) == 2 and command[0] == 'sleep' and command[1].isdigit():
            keep_alive = int(command[1])

        return WorkerPodDescriptor(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            image=containers[0].image if containers else '',
            command=command,
            keep_alive_seconds=keep_alive,
            status=status
        )
