"""
Cluster handle: kubectl on the k3s host, reached only through the SSH channel.
"""
import json
import logging
import shlex
from typing import Any, Dict, Optional, Sequence

from deploy_pipeline.errors import CommandError, CommandTimeout
from deploy_pipeline.infrastructure.remote import RemoteShell
from deploy_pipeline.utils.shell import CommandResult

logger = logging.getLogger(__name__)


class KubectlCluster:
    """Minimal kubectl surface the pipeline consumes."""

    def __init__(self, remote: RemoteShell, kubectl: str = "kubectl",
                 timeout: Optional[float] = None):
        self.remote = remote
        self.kubectl = kubectl
        self.timeout = timeout

    def run(self, args: Sequence[str], input_text: Optional[str] = None,
            timeout: Optional[float] = None) -> CommandResult:
        """Run `kubectl <args>` on the host."""
        command = " ".join(shlex.quote(a) for a in [self.kubectl, *args])
        return self.remote.run(command, timeout=timeout or self.timeout, input_text=input_text)

    def api_reachable(self, timeout: Optional[float] = None) -> bool:
        """True once `kubectl cluster-info` answers."""
        try:
            result = self.run(["cluster-info"], timeout=timeout)
        except CommandTimeout:
            return False
        if not result.ok:
            logger.debug(f"cluster-info not ready: {result.stderr.strip()}")
        return result.ok

    def apply(self, manifest_yaml: str) -> CommandResult:
        """Submit a multi-document manifest set in one `kubectl apply`."""
        return self.run(["apply", "-f", "-"], input_text=manifest_yaml).check()

    def get_deployment(self, name: str, namespace: str = "default",
                       timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Deployment object as JSON, or None if it does not exist (yet)."""
        result = self.run(["get", "deployment", name, "-n", namespace, "-o", "json"], timeout=timeout)
        if not result.ok:
            if "NotFound" in result.stderr or "not found" in result.stderr:
                return None
            raise CommandError(result.args, result.returncode, result.stderr)
        try:
            return json.loads(result.stdout)
        except ValueError:
            raise CommandError(result.args, result.returncode, "invalid JSON from kubectl")

    def resources(self) -> CommandResult:
        return self.run(["get", "pods,svc,ingress", "-A", "-o", "wide"])

    def logs(self, deployment: str, namespace: str = "default", tail: int = 100) -> CommandResult:
        return self.run([
            "logs", f"deployment/{deployment}", "-n", namespace,
            f"--tail={tail}", "--all-containers=true",
        ])

    def events(self) -> CommandResult:
        """Cluster events, oldest first."""
        return self.run(["get", "events", "-A", "--sort-by=.metadata.creationTimestamp"])
