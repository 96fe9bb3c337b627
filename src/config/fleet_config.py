#!/usr/bin/env python3
"""
Fleet configuration for distributed load-test runs.
Loaded from YAML; missing files fall back to defaults.

Example::

    namespace: loadtest
    pod_prefix: jmeter-worker
    workers: 3
    keep_alive_seconds: 3600
    quorum: all            # or a worker count (2) or a fraction (0.5)
    scenario_file: scenarios/checkout.jmx
    properties_file: scenarios/prod.properties
    worker_files:          # optional per-worker overrides, by index
      1:
        properties_file: scenarios/eu.properties
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from src.orchestration.errors import ConfigurationError
from src.orchestration.fleet_orchestrator import QuorumPolicy
from src.orchestration.load_test_plan import LoadTestPlan
from src.orchestration.models import WorkerSpec
from src.orchestration.readiness_policy import PollPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "loadtest_fleet.yaml"


@dataclass
class FleetConfig:
    namespace: str = "default"
    context: Optional[str] = None
    kubeconfig: Optional[str] = None
    pod_prefix: str = "jmeter-worker"
    workers: int = 1
    image: str = "ubuntu:22.04"
    keep_alive_seconds: int = 3600
    ready_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 3.0
    command_timeout_seconds: Optional[float] = None
    run_deadline_seconds: Optional[float] = None
    quorum: Any = "all"
    results_dir: str = "results"
    jmeter_version: str = "5.6.3"
    install_jmeter: bool = True
    scenario_file: Optional[str] = None
    properties_file: Optional[str] = None
    worker_files: Dict[int, Dict[str, str]] = field(default_factory=dict)

    def __post_init__(self):
        if self.workers < 1:
            raise ConfigurationError(f"At least one worker is required, got {self.workers}")
        if self.keep_alive_seconds < 1:
            raise ConfigurationError(f"keep_alive_seconds must be positive, got {self.keep_alive_seconds}")
        self.quorum_policy()
        self.poll_policy()

    def quorum_policy(self) -> QuorumPolicy:
        return QuorumPolicy.parse(self.quorum)

    def poll_policy(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval_seconds, timeout=self.ready_timeout_seconds)

    def load_test_plan(self) -> LoadTestPlan:
        return LoadTestPlan(jmeter_version=self.jmeter_version, install_jmeter=self.install_jmeter)

    def pod_names(self) -> List[str]:
        return [f"{self.pod_prefix}-{index}" for index in range(self.workers)]

    def build_worker_specs(self, base_dir: Optional[Path] = None) -> List[WorkerSpec]:
        """Read scenario/properties files and produce one spec per worker."""
        base_dir = base_dir or Path.cwd()
        specs = []

        for index, name in enumerate(self.pod_names()):
            overrides = self.worker_files.get(index, {})
            scenario = overrides.get('scenario_file', self.scenario_file)
            properties = overrides.get('properties_file', self.properties_file)
            if not scenario or not properties:
                raise ConfigurationError(f"Worker {name} needs both a scenario and a properties file")

            scenario_path = base_dir / scenario
            properties_path = base_dir / properties
            specs.append(WorkerSpec(
                name=name,
                image=self.image,
                keep_alive_seconds=self.keep_alive_seconds,
                scenario_file_name=scenario_path.name,
                scenario_content=_read_bytes(scenario_path),
                properties_file_name=properties_path.name,
                properties_content=_read_bytes(properties_path)
            ))

        return specs


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e


def load_fleet_config(config_path: str = DEFAULT_CONFIG_PATH, **overrides) -> FleetConfig:
    """Load configuration from YAML, then apply non-None keyword overrides."""
    config_data: Dict[str, Any] = {}

    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Configuration file not found: {config_path}, using defaults")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration in {config_path} must be a mapping")

    known = {f.name for f in fields(FleetConfig)}
    unknown = set(config_data) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    config_data.update({key: value for key, value in overrides.items() if value is not None})

    worker_files = config_data.get('worker_files') or {}
    try:
        config_data['worker_files'] = {int(index): dict(files) for index, files in worker_files.items()}
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"worker_files must map worker indexes to file settings: {e}") from e

    try:
        return FleetConfig(**config_data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
