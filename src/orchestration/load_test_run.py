#!/usr/bin/env python3
"""
One load-test run over a worker fleet.

This is what a presentation layer talks to: it reads ``state``, ``workers()``
and ``results`` and feeds back the user's confirmations. Confirming the start
launches the run in the background; progress of that task drives the state
machine to ``Completed``.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from src.orchestration.errors import InvalidTransition
from src.orchestration.fleet_orchestrator import FleetOrchestrator
from src.orchestration.load_test_plan import LoadTestPlan
from src.orchestration.models import (
    CommandExecutionResult, WorkerOutcome, WorkerPodDescriptor, WorkerSpec
)
from src.orchestration.run_state import RunEvent, RunState, RunStateMachine

logger = logging.getLogger(__name__)


class LoadTestRun:
    def __init__(self, orchestrator: FleetOrchestrator,
                 specs: Sequence[WorkerSpec],
                 plan: Optional[LoadTestPlan] = None,
                 deadline: Optional[float] = None,
                 results_dir: str = "results",
                 machine: Optional[RunStateMachine] = None):
        self.orchestrator = orchestrator
        self.specs = list(specs)
        self.plan = plan or LoadTestPlan()
        self.deadline = deadline
        self.results_dir = Path(results_dir)
        self.machine = machine or RunStateMachine()

        self.outcomes: List[WorkerOutcome] = []
        self.results: Dict[str, List[CommandExecutionResult]] = {}
        self.collected: Dict[str, Path] = {}
        self.failure: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

        self.machine.subscribe(self._on_transition)

    @property
    def state(self) -> RunState:
        return self.machine.state

    def workers(self) -> List[WorkerPodDescriptor]:
        return self.orchestrator.workers()

    def request_start(self) -> RunState:
        return self.machine.request_start()

    def confirm_start(self) -> RunState:
        """Must be called from a running event loop; the run starts as a task.

        Raises ``RuntimeError`` without leaving ``StartConfirm`` when no loop
        is running.
        """
        asyncio.get_running_loop()
        return self.machine.confirm_start()

    def request_cancel(self) -> RunState:
        return self.machine.request_cancel()

    def request_reset(self) -> RunState:
        return self.machine.request_reset()

    def decline(self) -> RunState:
        return self.machine.decline()

    async def wait(self) -> RunState:
        """Wait for the background run, if any, to finish."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.state

    async def confirm_cancel(self) -> RunState:
        state = self.machine.confirm_cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await self.wait()
        failed = await self.orchestrator.teardown_fleet()
        if failed:
            logger.warning(f"Cleanup requests failed for: {', '.join(failed)}")
        return state

    async def confirm_reset(self) -> RunState:
        state = self.machine.confirm_reset()
        kept = await self.orchestrator.retain_healthy()
        self.outcomes = []
        self.results = {}
        self.collected = {}
        self.failure = None
        self._task = None
        logger.info(f"Run re-armed with {len(kept)} reusable workers")
        return state

    async def collect(self) -> Dict[str, Path]:
        """Copy each worker's result file into the results directory."""
        if not self.machine.can(RunEvent.COLLECT):
            raise InvalidTransition(self.state, RunEvent.COLLECT.value)

        results = await self.orchestrator.dispatch(self.plan.collect_step().command)
        self.results_dir.mkdir(parents=True, exist_ok=True)

        for pod_name, result in results.items():
            if not result.succeeded:
                logger.error(f"Failed to collect results from {pod_name}: {result.reason}")
                continue
            path = self.results_dir / f"{pod_name}-{self.plan.results_file_name}"
            path.write_text(result.stdout)
            self.collected[pod_name] = path

        self.machine.collect()
        logger.info(f"Collected results from {len(self.collected)}/{len(results)} workers into {self.results_dir}")
        return self.collected

    def _on_transition(self, previous: RunState, current: RunState, event: RunEvent):
        if event == RunEvent.CONFIRM_START:
            self.failure = None
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        try:
            if self.deadline is None:
                await self._execute()
            else:
                await asyncio.wait_for(self._execute(), self.deadline)
        except asyncio.TimeoutError:
            self.failure = f"run deadline of {self.deadline}s exhausted"
            logger.warning(self.failure)
        except Exception as e:
            self.failure = str(e)
            logger.error(f"Load test run failed: {e}")

        if self.machine.can(RunEvent.COMPLETE):
            self.machine.complete()

    async def _execute(self):
        self.outcomes = await self.orchestrator.bring_up_fleet(self.specs)
        if not self.orchestrator.quorum_met(self.outcomes):
            ready = sum(1 for outcome in self.outcomes if outcome.succeeded)
            required = self.orchestrator.quorum.required(len(self.outcomes))
            self.failure = f"quorum not met: {ready}/{len(self.outcomes)} workers ready, {required} required"
            logger.error(self.failure)
            return

        specs = {spec.name: spec for spec in self.specs}

        def steps_for(pod: WorkerPodDescriptor):
            spec = specs.get(pod.name)
            return self.plan.steps_for(spec) if spec is not None else []

        self.results = await self.orchestrator.run_steps(steps_for)
        failed = [name for name, steps in self.results.items() if not steps or not steps[-1].succeeded]
        if failed:
            self.failure = f"load test failed on {len(failed)} workers: {', '.join(sorted(failed))}"
            logger.error(self.failure)
