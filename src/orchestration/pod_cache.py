#!/usr/bin/env python3

import threading
from dataclasses import replace
from typing import Dict, List, Optional

from src.orchestration.models import WorkerPodDescriptor


class PodCache:
    """Thread-safe map of pod name to the last observed worker descriptor.

    Descriptors are immutable snapshots, so a reader holding one never sees it
    change underneath. The lock only guards the dictionary itself; callers must
    not hold it across cluster calls.
    """

    def __init__(self):
        self._pods: Dict[str, WorkerPodDescriptor] = {}
        self._lock = threading.Lock()

    def put(self, name: str, descriptor: WorkerPodDescriptor):
        with self._lock:
            self._pods[name] = descriptor

    def get(self, name: str) -> Optional[WorkerPodDescriptor]:
        with self._lock:
            return self._pods.get(name)

    def update(self, name: str, **changes) -> Optional[WorkerPodDescriptor]:
        """Replace a cached descriptor with a modified copy, if it is cached."""
        with self._lock:
            current = self._pods.get(name)
            if current is None:
                return None
            updated = replace(current, **changes)
            self._pods[name] = updated
            return updated

    def remove(self, name: str) -> Optional[WorkerPodDescriptor]:
        with self._lock:
            return self._pods.pop(name, None)

    def list(self) -> List[WorkerPodDescriptor]:
        with self._lock:
            return list(self._pods.values())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._pods.keys())

    def clear(self):
        with self._lock:
            self._pods.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pods)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._pods
