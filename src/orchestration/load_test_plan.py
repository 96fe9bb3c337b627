#!/usr/bin/env python3
"""
Shell commands that turn a bare worker pod into a JMeter load generator.
Files are shipped inside the command string (base64), since the exec stream
is opened without stdin.
"""

import base64
import shlex
from dataclasses import dataclass
from typing import List

from src.orchestration.models import WorkerSpec

UPLOAD_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class RemoteCommand:
    display_name: str
    command: str


@dataclass
class LoadTestPlan:
    jmeter_version: str = "5.6.3"
    work_dir: str = "/opt/loadtest"
    results_file_name: str = "results.jtl"
    install_jmeter: bool = True
    mirror_url: str = "https://archive.apache.org/dist/jmeter/binaries"

    @property
    def jmeter_home(self) -> str:
        return f"{self.work_dir}/apache-jmeter-{self.jmeter_version}"

    @property
    def results_path(self) -> str:
        return f"{self.work_dir}/{self.results_file_name}"

    def install_steps(self) -> List[RemoteCommand]:
        if not self.install_jmeter:
            return []

        archive = f"apache-jmeter-{self.jmeter_version}.tgz"
        return [
            RemoteCommand(
                "Install Java runtime",
                "export DEBIAN_FRONTEND=noninteractive && apt-get update -qq && "
                "apt-get install -y -qq openjdk-17-jre-headless curl ca-certificates"
            ),
            RemoteCommand(
                "Install JMeter",
                f"mkdir -p {shlex.quote(self.work_dir)} && "
                f"curl -fsSL {shlex.quote(self.mirror_url + '/' + archive)} "
                f"| tar -xz -C {shlex.quote(self.work_dir)}"
            )
        ]

    def upload_steps(self, file_name: str, content: bytes) -> List[RemoteCommand]:
        target = shlex.quote(f"{self.work_dir}/{file_name}")
        staging = shlex.quote(f"{self.work_dir}/{file_name}.b64")
        encoded = base64.b64encode(content).decode('ascii')
        chunks = [encoded[i:i + UPLOAD_CHUNK_SIZE] for i in range(0, len(encoded), UPLOAD_CHUNK_SIZE)] or ['']

        steps = [
            RemoteCommand(
                f"Upload {file_name} ({index + 1}/{len(chunks)})",
                f"mkdir -p {shlex.quote(self.work_dir)} && "
                f"printf '%s' '{chunk}' {'>' if index == 0 else '>>'} {staging}"
            )
            for index, chunk in enumerate(chunks)
        ]
        steps.append(RemoteCommand(
            f"Decode {file_name}",
            f"base64 -d {staging} > {target} && rm -f {staging}"
        ))
        return steps

    def run_step(self, spec: WorkerSpec) -> RemoteCommand:
        work_dir = shlex.quote(self.work_dir)
        return RemoteCommand(
            "Run load test",
            f"cd {work_dir} && rm -f {shlex.quote(self.results_path)} && "
            f"{shlex.quote(self.jmeter_home + '/bin/jmeter')} -n "
            f"-t {shlex.quote(spec.scenario_file_name)} "
            f"-q {shlex.quote(spec.properties_file_name)} "
            f"-l {shlex.quote(self.results_file_name)} -j jmeter.log"
        )

    def collect_step(self) -> RemoteCommand:
        return RemoteCommand("Collect results", f"cat {shlex.quote(self.results_path)}")

    def steps_for(self, spec: WorkerSpec) -> List[RemoteCommand]:
        """Install, upload both files, then run: executed in order on one worker."""
        steps = self.install_steps()
        steps.extend(self.upload_steps(spec.scenario_file_name, spec.scenario_content))
        steps.extend(self.upload_steps(spec.properties_file_name, spec.properties_content))
        steps.append(self.run_step(spec))
        return steps
