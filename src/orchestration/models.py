#!/usr/bin/env python3

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from src.orchestration.errors import is_cancellation


class PodStatus(Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    READY = "Ready"
    FAILED = "Failed"
    DELETED = "Deleted"


class CommandOutcome(Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class WorkerSpec:
    """Desired worker pod plus the opaque files it runs the test with."""
    name: str
    image: str = "ubuntu:22.04"
    keep_alive_seconds: int = 3600
    scenario_file_name: str = "scenario.jmx"
    scenario_content: bytes = b""
    properties_file_name: str = "test.properties"
    properties_content: bytes = b""


@dataclass(frozen=True)
class WorkerPodDescriptor:
    name: str
    namespace: str
    image: str
    command: List[str]
    keep_alive_seconds: int
    status: PodStatus = PodStatus.PENDING
    observed_at: datetime = field(default_factory=datetime.now)
    message: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.status == PodStatus.READY


@dataclass(frozen=True)
class CommandExecutionResult:
    pod_name: str
    command: str
    stdout: str
    stderr: str
    outcome: CommandOutcome
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome == CommandOutcome.SUCCEEDED


@dataclass
class WorkerOutcome:
    """Per-worker result of fleet bring-up: a ready descriptor or the error."""
    name: str
    descriptor: Optional[WorkerPodDescriptor] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.descriptor is not None and self.descriptor.is_ready

    @property
    def cancelled(self) -> bool:
        return is_cancellation(self.error)

    @property
    def reason(self) -> Optional[str]:
        if self.error is None:
            return None
        if self.cancelled:
            return f"cancelled: {self.error}" if str(self.error) else "cancelled"
        return str(self.error)


@dataclass(frozen=True)
class ActionDone:
    """Progress notification: one named step finished on one worker."""
    pod_name: str
    name: str
    duration_seconds: float
