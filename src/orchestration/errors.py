#!/usr/bin/env python3
"""
Error taxonomy for the load-test pod fleet.
Transport and API failures keep their original cause chained; timeouts and
abandoned waits are a distinct kind so callers can tell them apart.
"""

import asyncio
from typing import Optional


class FleetError(Exception):
    """Base class for all fleet orchestration errors."""


class ConfigurationError(FleetError):
    """Invalid or unreadable fleet configuration."""


class ClusterConnectionError(FleetError):
    """The cluster control plane is unreachable or reports unhealthy."""


class PodOperationError(FleetError):
    """A create/read/delete call against a worker pod failed."""

    def __init__(self, message: str, pod_name: str, namespace: str,
                 status: Optional[int] = None):
        super().__init__(message)
        self.pod_name = pod_name
        self.namespace = namespace
        self.status = status


class RemoteCommandError(FleetError):
    """The exec stream into a pod could not be established or was interrupted."""

    def __init__(self, message: str, pod_name: str, namespace: str, command: str):
        super().__init__(message)
        self.pod_name = pod_name
        self.namespace = namespace
        self.command = command


class OperationCancelled(FleetError):
    """A bounded wait expired or the operation was abandoned."""

    def __init__(self, message: str, reason: str = "cancelled"):
        super().__init__(message)
        self.reason = reason


class ReadinessTimeout(OperationCancelled):
    """A worker pod did not become ready before its deadline."""

    def __init__(self, message: str, elapsed: float = 0.0):
        super().__init__(message, reason="timeout")
        self.elapsed = elapsed


class InvalidTransition(FleetError):
    """A run state change that is not one of the defined edges."""

    def __init__(self, current, event: str):
        super().__init__(f"Cannot apply '{event}' while run is {current.value}")
        self.current = current
        self.event = event


def is_cancellation(error: Optional[BaseException]) -> bool:
    """True when the error means 'abandoned' rather than 'failed'."""
    return isinstance(error, (OperationCancelled, asyncio.CancelledError))
