#!/usr/bin/env python3
"""
Run state machine for a load-test fleet.

Exactly one state is active for the whole fleet. User confirmations and
orchestrator progress events move it along a fixed set of edges; starting and
cancelling always pass through their confirmation state first. The machine
only reacts to events and never waits on anything itself.
"""

import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from src.orchestration.errors import InvalidTransition

logger = logging.getLogger(__name__)


class RunState(Enum):
    NOT_STARTED = "NotStarted"
    START_CONFIRM = "StartConfirm"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCEL_CONFIRM = "CancelConfirm"
    CANCELLED = "Cancelled"
    RESET_CONFIRM = "ResetConfirm"
    COLLECTED = "Collected"


class RunEvent(Enum):
    REQUEST_START = "request_start"
    CONFIRM_START = "confirm_start"
    REQUEST_CANCEL = "request_cancel"
    CONFIRM_CANCEL = "confirm_cancel"
    REQUEST_RESET = "request_reset"
    CONFIRM_RESET = "confirm_reset"
    DECLINE = "decline"
    COMPLETE = "complete"
    COLLECT = "collect"


TRANSITIONS: Dict[Tuple[RunState, RunEvent], RunState] = {
    (RunState.NOT_STARTED, RunEvent.REQUEST_START): RunState.START_CONFIRM,
    (RunState.START_CONFIRM, RunEvent.CONFIRM_START): RunState.IN_PROGRESS,
    (RunState.START_CONFIRM, RunEvent.DECLINE): RunState.NOT_STARTED,
    (RunState.IN_PROGRESS, RunEvent.COMPLETE): RunState.COMPLETED,
    (RunState.IN_PROGRESS, RunEvent.REQUEST_CANCEL): RunState.CANCEL_CONFIRM,
    (RunState.CANCEL_CONFIRM, RunEvent.CONFIRM_CANCEL): RunState.CANCELLED,
    (RunState.CANCEL_CONFIRM, RunEvent.DECLINE): RunState.IN_PROGRESS,
    # the run may finish while the user is still deciding whether to cancel
    (RunState.CANCEL_CONFIRM, RunEvent.COMPLETE): RunState.COMPLETED,
    (RunState.COMPLETED, RunEvent.COLLECT): RunState.COLLECTED,
    (RunState.COMPLETED, RunEvent.REQUEST_RESET): RunState.RESET_CONFIRM,
    (RunState.CANCELLED, RunEvent.REQUEST_RESET): RunState.RESET_CONFIRM,
    (RunState.COLLECTED, RunEvent.REQUEST_RESET): RunState.RESET_CONFIRM,
    (RunState.RESET_CONFIRM, RunEvent.CONFIRM_RESET): RunState.NOT_STARTED,
}

Listener = Callable[[RunState, RunState, RunEvent], None]


class RunStateMachine:
    def __init__(self, initial: RunState = RunState.NOT_STARTED):
        self._state = initial
        self._before_reset: Optional[RunState] = None
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._entry_callbacks: Dict[RunState, List[Callable[[], None]]] = defaultdict(list)
        self.history: List[Tuple[RunState, RunEvent, RunState]] = []

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def on_enter(self, state: RunState, callback: Callable[[], None]):
        self._entry_callbacks[state].append(callback)

    def can(self, event: RunEvent) -> bool:
        with self._lock:
            return self._target(self._state, event) is not None

    def fire(self, event: RunEvent) -> RunState:
        with self._lock:
            previous = self._state
            target = self._target(previous, event)
            if target is None:
                raise InvalidTransition(previous, event.value)
            if target == RunState.RESET_CONFIRM:
                self._before_reset = previous
            self._state = target
            self.history.append((previous, event, target))

        logger.info(f"Run state {previous.value} -> {target.value} ({event.value})")
        for listener in list(self._listeners):
            listener(previous, target, event)
        for callback in list(self._entry_callbacks[target]):
            callback()
        return target

    def _target(self, state: RunState, event: RunEvent) -> Optional[RunState]:
        if state == RunState.RESET_CONFIRM and event == RunEvent.DECLINE:
            return self._before_reset
        return TRANSITIONS.get((state, event))

    def request_start(self) -> RunState:
        return self.fire(RunEvent.REQUEST_START)

    def confirm_start(self) -> RunState:
        return self.fire(RunEvent.CONFIRM_START)

    def request_cancel(self) -> RunState:
        return self.fire(RunEvent.REQUEST_CANCEL)

    def confirm_cancel(self) -> RunState:
        return self.fire(RunEvent.CONFIRM_CANCEL)

    def request_reset(self) -> RunState:
        return self.fire(RunEvent.REQUEST_RESET)

    def confirm_reset(self) -> RunState:
        return self.fire(RunEvent.CONFIRM_RESET)

    def decline(self) -> RunState:
        return self.fire(RunEvent.DECLINE)

    def complete(self) -> RunState:
        return self.fire(RunEvent.COMPLETE)

    def collect(self) -> RunState:
        return self.fire(RunEvent.COLLECT)
