#!/usr/bin/env python3
"""
Injected sink for fleet progress and cleanup events.
The orchestrator never writes progress to a fixed backend; it calls an
observer, and the default one forwards to logging.
"""

import logging

from src.orchestration.models import ActionDone, CommandExecutionResult, WorkerOutcome

logger = logging.getLogger(__name__)


class FleetObserver:
    """No-op observer. Subclass and override the events you care about."""

    def worker_created(self, pod_name: str):
        pass

    def worker_ready(self, outcome: WorkerOutcome):
        pass

    def worker_failed(self, outcome: WorkerOutcome):
        pass

    def action_done(self, action: ActionDone):
        pass

    def command_finished(self, result: CommandExecutionResult):
        pass

    def cleanup_requested(self, pod_name: str):
        pass

    def cleanup_failed(self, pod_name: str, error: BaseException):
        pass


class LoggingFleetObserver(FleetObserver):

    def worker_created(self, pod_name: str):
        logger.info(f"Worker pod {pod_name} submitted")

    def worker_ready(self, outcome: WorkerOutcome):
        logger.info(f"Worker pod {outcome.name} ready")

    def worker_failed(self, outcome: WorkerOutcome):
        logger.error(f"Worker pod {outcome.name} failed: {outcome.reason}")

    def action_done(self, action: ActionDone):
        logger.info(f"[{action.pod_name}] {action.name} done in {action.duration_seconds:.1f}s")

    def command_finished(self, result: CommandExecutionResult):
        if result.succeeded:
            logger.debug(f"[{result.pod_name}] command succeeded: {result.command}")
        else:
            logger.warning(f"[{result.pod_name}] command failed ({result.reason}): {result.command}")

    def cleanup_requested(self, pod_name: str):
        logger.info(f"Deletion requested for worker pod {pod_name}")

    def cleanup_failed(self, pod_name: str, error: BaseException):
        logger.warning(f"Failed to cleanup pod {pod_name}: {error}")
