#!/usr/bin/env python3
"""
Command line driver for distributed load-test runs on Kubernetes.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from prometheus_client import start_http_server

from src.cluster.cluster_handle import load_cluster_handle
from src.cluster.health_probe import check_connection
from src.config.fleet_config import DEFAULT_CONFIG_PATH, FleetConfig, load_fleet_config
from src.orchestration.errors import FleetError
from src.orchestration.fleet_orchestrator import FleetOrchestrator
from src.orchestration.load_test_run import LoadTestRun
from src.orchestration.pod_cache import PodCache
from src.orchestration.pod_lifecycle import PodLifecycleManager
from src.orchestration.remote_executor import RemoteExecutor
from src.orchestration.run_state import RunState

logger = logging.getLogger('loadtest_fleet')


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_orchestrator(fleet_config: FleetConfig) -> FleetOrchestrator:
    handle = load_cluster_handle(
        kubeconfig_path=fleet_config.kubeconfig,
        context=fleet_config.context,
        namespace=fleet_config.namespace,
        pod_prefix=fleet_config.pod_prefix
    )
    lifecycle = PodLifecycleManager(
        handle,
        cache=PodCache(),
        poll_policy=fleet_config.poll_policy(),
        image=fleet_config.image
    )
    return FleetOrchestrator(
        lifecycle,
        RemoteExecutor(handle),
        quorum=fleet_config.quorum_policy(),
        ready_timeout=fleet_config.ready_timeout_seconds,
        command_timeout=fleet_config.command_timeout_seconds
    )


def confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    answer = input(f"{prompt} [y/N] ").strip().lower()
    return answer in ('y', 'yes')


def print_summary(run: LoadTestRun):
    print(f"\nRun state: {run.state.value}")
    for outcome in run.outcomes:
        status = "ready" if outcome.succeeded else f"failed ({outcome.reason})"
        print(f"  {outcome.name}: {status}")
    for pod_name, steps in sorted(run.results.items()):
        last = steps[-1] if steps else None
        if last is not None:
            print(f"  {pod_name}: {last.outcome.value} after {len(steps)} steps")
    for pod_name, path in sorted(run.collected.items()):
        print(f"  {pod_name}: results in {path}")
    if run.failure:
        print(f"Failure: {run.failure}")


async def run_load_test(fleet_config: FleetConfig, assume_yes: bool, keep_pods: bool,
                        base_dir: Optional[Path] = None) -> int:
    specs = fleet_config.build_worker_specs(base_dir)
    orchestrator = build_orchestrator(fleet_config)
    await orchestrator.ensure_cluster_reachable()

    run = LoadTestRun(
        orchestrator,
        specs,
        plan=fleet_config.load_test_plan(),
        deadline=fleet_config.run_deadline_seconds,
        results_dir=fleet_config.results_dir
    )

    print("The test will run with the following configuration:")
    for spec in specs:
        print(f"  Pod name: {spec.name}")
        print(f"    Scenario file: {spec.scenario_file_name}")
        print(f"    Properties file: {spec.properties_file_name}")

    run.request_start()
    if not confirm("Do you want to proceed with this config?", assume_yes):
        run.decline()
        return 1

    run.confirm_start()
    try:
        await run.wait()
        if run.state == RunState.COMPLETED and not run.failure:
            await run.collect()
    except (KeyboardInterrupt, asyncio.CancelledError):
        if run.state == RunState.IN_PROGRESS:
            run.request_cancel()
            await run.confirm_cancel()
        raise
    finally:
        print_summary(run)
        if not keep_pods:
            await orchestrator.teardown_fleet()

    return 0 if run.state == RunState.COLLECTED else 1


def check_cluster(fleet_config: FleetConfig) -> int:
    handle = load_cluster_handle(
        kubeconfig_path=fleet_config.kubeconfig,
        context=fleet_config.context,
        namespace=fleet_config.namespace
    )
    check_connection(handle)
    print(f"Cluster reachable (namespace: {handle.namespace})")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Distributed JMeter load tests on Kubernetes worker pods')
    parser.add_argument('command', nargs='?', choices=['run', 'check'], default='run',
                        help='run a load test or only check the cluster connection')
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH, help='Path to fleet configuration YAML')
    parser.add_argument('--kubeconfig', help='Path to kubeconfig file')
    parser.add_argument('--context', help='Kubeconfig context to use')
    parser.add_argument('--namespace', help='Namespace for worker pods')
    parser.add_argument('--workers', type=int, help='Override number of worker pods')
    parser.add_argument('--yes', action='store_true', help='Do not ask for confirmation')
    parser.add_argument('--keep-pods', action='store_true', help='Leave worker pods running afterwards')
    parser.add_argument('--metrics-port', type=int, help='Expose Prometheus metrics on this port')
    parser.add_argument('--log-level', default='INFO', help='Logging level')

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        fleet_config = load_fleet_config(
            args.config,
            kubeconfig=args.kubeconfig,
            context=args.context,
            namespace=args.namespace,
            workers=args.workers
        )

        if args.command == 'check':
            return check_cluster(fleet_config)

        if args.metrics_port:
            start_http_server(args.metrics_port)
            logger.info(f"Metrics exposed on port {args.metrics_port}")

        return asyncio.run(run_load_test(
            fleet_config,
            assume_yes=args.yes,
            keep_pods=args.keep_pods,
            base_dir=Path(args.config).resolve().parent
        ))
    except FleetError as e:
        logger.error(f"Load test failed: {e}")
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
