"""
Failure diagnostics for the deployed instance.

Runs after something has already gone wrong, so every sub-probe is
best-effort: a probe that fails is recorded in the report and collection
moves on. `DiagnosticsCollector.collect` never raises.
"""
import base64
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import boto3
import requests
from pydantic import BaseModel, Field

from deploy_pipeline.infrastructure.cluster import KubectlCluster
from deploy_pipeline.infrastructure.remote import tcp_port_open
from deploy_pipeline.schemas import ProbeResult
from deploy_pipeline.settings import Settings
from deploy_pipeline.utils.shell import CommandResult

logger = logging.getLogger(__name__)

NO_CLUSTER = "no cluster access (SSH never confirmed)"


class DiagnosticsReport(BaseModel):
    """Everything gathered about a failed run."""
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    address: Optional[str] = None
    ingress_logs: ProbeResult = ProbeResult.skip("not collected")
    app_logs: ProbeResult = ProbeResult.skip("not collected")
    cluster_status: ProbeResult = ProbeResult.skip("not collected")
    events: ProbeResult = ProbeResult.skip("not collected")
    port_probes: Dict[int, ProbeResult] = Field(default_factory=dict)
    http_probe: ProbeResult = ProbeResult.skip("not collected")
    instance_console: ProbeResult = ProbeResult.skip("not collected")

    @property
    def reference(self) -> str:
        return f"diagnostics-{self.collected_at.strftime('%Y%m%dT%H%M%SZ')}"

    def sections(self) -> Dict[str, ProbeResult]:
        sections = {
            "ingress_logs": self.ingress_logs,
            "app_logs": self.app_logs,
            "cluster_status": self.cluster_status,
            "events": self.events,
        }
        for port, probe in sorted(self.port_probes.items()):
            sections[f"port_{port}"] = probe
        sections["http_probe"] = self.http_probe
        sections["instance_console"] = self.instance_console
        return sections

    def any_probe_succeeded(self) -> bool:
        """True if the entry point or any port answered."""
        return self.http_probe.ok or any(p.ok for p in self.port_probes.values())

    def to_dict(self) -> Dict[str, Any]:
        return json.loads(self.model_dump_json())

    def render(self) -> str:
        """Plain-text report for the run's log stream."""
        lines = [
            "=" * 60,
            f"  DIAGNOSTICS REPORT {self.reference}",
            f"  Instance: {self.address or 'unknown'}",
            "=" * 60,
        ]
        for name, probe in self.sections().items():
            lines.append(f"--- {name} [{probe.status}] ---")
            if probe.error:
                lines.append(f"error: {probe.error}")
            if probe.output:
                lines.append(probe.output.rstrip())
        return "\n".join(lines)


def _from_command(result: CommandResult) -> ProbeResult:
    if result.ok:
        return ProbeResult.succeeded(result.stdout)
    return ProbeResult.failed(
        f"exit code {result.returncode}: {result.stderr.strip()[:500]}",
        output=result.stdout,
    )


class DiagnosticsCollector:
    """Gather logs, events and network probes after a failed stage."""

    def __init__(self, settings: Settings, ec2_client: Optional[Any] = None,
                 http_get: Callable[..., Any] = requests.get,
                 port_check: Callable[[str, int, float], bool] = tcp_port_open):
        self.settings = settings
        self._ec2_client = ec2_client
        self.http_get = http_get
        self.port_check = port_check

    @property
    def ec2_client(self):
        if self._ec2_client is None:
            self._ec2_client = boto3.client('ec2', region_name=self.settings.aws_region)
        return self._ec2_client

    def _probe(self, name: str, func: Callable[[], ProbeResult]) -> ProbeResult:
        try:
            result = func()
        except Exception as e:
            logger.warning(f"Diagnostics probe {name} failed: {e}")
            return ProbeResult.failed(f"{type(e).__name__}: {e}")
        logger.info(f"  {name}: {result.status}")
        return result

    def collect_ingress_logs(self, cluster: KubectlCluster) -> ProbeResult:
        return _from_command(cluster.logs(
            self.settings.ingress_deployment,
            namespace=self.settings.ingress_namespace,
            tail=self.settings.diagnostic_log_lines,
        ))

    def collect_app_logs(self, cluster: KubectlCluster) -> ProbeResult:
        return _from_command(cluster.logs(self.settings.app_name, tail=self.settings.diagnostic_log_lines))

    def probe_port(self, address: str, port: int) -> ProbeResult:
        if self.port_check(address, port, self.settings.ssh_connect_timeout):
            return ProbeResult.succeeded(f"{address}:{port} accepted a TCP connection")
        return ProbeResult.failed(f"{address}:{port} refused or timed out")

    def probe_http(self, address: str) -> ProbeResult:
        url = self.settings.entry_point_url(address)
        response = self.http_get(url, timeout=self.settings.verify_retry.per_attempt_timeout)
        summary = f"GET {url} -> HTTP {response.status_code}"
        if response.status_code == 200:
            return ProbeResult.succeeded(summary)
        return ProbeResult.failed(summary, output=(response.text or "")[:1000])

    def instance_console_output(self, address: str) -> ProbeResult:
        """EC2 console output of the instance owning `address`."""
        response = self.ec2_client.describe_instances(
            Filters=[{"Name": "ip-address", "Values": [address]}]
        )
        instances = [i for r in response.get("Reservations", []) for i in r.get("Instances", [])]
        if not instances:
            return ProbeResult.failed(f"No EC2 instance with public IP {address}")
        instance_id = instances[0]["InstanceId"]
        console = self.ec2_client.get_console_output(InstanceId=instance_id)
        encoded = console.get("Output") or ""
        try:
            output = base64.b64decode(encoded).decode("utf-8", errors="replace")
        except ValueError:
            output = encoded
        return ProbeResult.succeeded(f"[{instance_id}]\n{output[-4000:]}")

    def collect(self, address: Optional[str], cluster: Optional[KubectlCluster] = None) -> DiagnosticsReport:
        """Build a report; never raises."""
        logger.info(f"🔍 Collecting diagnostics for {address or 'unknown instance'}")
        report = DiagnosticsReport(address=address)

        if cluster is not None:
            report.ingress_logs = self._probe("ingress_logs", lambda: self.collect_ingress_logs(cluster))
            report.app_logs = self._probe("app_logs", lambda: self.collect_app_logs(cluster))
            report.cluster_status = self._probe("cluster_status", lambda: _from_command(cluster.resources()))
            report.events = self._probe("events", lambda: _from_command(cluster.events()))
        else:
            for field in ("ingress_logs", "app_logs", "cluster_status", "events"):
                setattr(report, field, ProbeResult.skip(NO_CLUSTER))

        if address:
            for port in self.settings.diagnostic_ports:
                report.port_probes[port] = self._probe(f"port_{port}", lambda p=port: self.probe_port(address, p))
            report.http_probe = self._probe("http_probe", lambda: self.probe_http(address))
            report.instance_console = self._probe("instance_console", lambda: self.instance_console_output(address))
        else:
            report.http_probe = ProbeResult.skip("no instance address")
            report.instance_console = ProbeResult.skip("no instance address")

        return report
