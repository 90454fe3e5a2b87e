"""
Rollout controller.

Submits the descriptor set declaratively and waits for the orchestrator to
report every replica ready:

    SUBMITTED -> RECONCILING -> CONVERGED | TIMED_OUT | FAILED

Re-applying the same spec is a no-op on the cluster side, so a rerun after a
partial failure needs no manual cleanup.
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from deploy_pipeline.errors import CommandError, CommandTimeout, ReadinessTimeout, RolloutError
from deploy_pipeline.infrastructure.cluster import KubectlCluster
from deploy_pipeline.infrastructure.poller import poll_until_ready
from deploy_pipeline.orchestration.manifests import render_manifests_yaml
from deploy_pipeline.schemas import DeploymentSpec, RetryPolicy

logger = logging.getLogger(__name__)


class RolloutState(str, Enum):
    """Lifecycle of one rollout"""
    PENDING = "pending"
    SUBMITTED = "submitted"
    RECONCILING = "reconciling"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


def deployment_failure_reason(deployment: Dict[str, Any]) -> Optional[str]:
    """Message of a Progressing=False condition, if the orchestrator gave up."""
    for condition in deployment.get("status", {}).get("conditions", []) or []:
        if condition.get("type") == "Progressing" and condition.get("status") == "False":
            return f"{condition.get('reason', 'Unknown')}: {condition.get('message', '')}".strip()
    return None


def deployment_converged(deployment: Dict[str, Any]) -> bool:
    """True when the latest generation is observed and every replica is ready."""
    metadata = deployment.get("metadata", {})
    spec = deployment.get("spec", {})
    status = deployment.get("status", {})

    desired = spec.get("replicas", 1)
    if status.get("observedGeneration", 0) < metadata.get("generation", 0):
        return False
    updated = status.get("updatedReplicas", 0)
    return (
        updated >= desired
        and status.get("replicas", 0) == updated
        and status.get("readyReplicas", 0) >= desired
        and status.get("availableReplicas", 0) >= desired
    )


class RolloutController:
    """Drive a DeploymentSpec to a converged state on the cluster."""

    def __init__(self, cluster: KubectlCluster, namespace: str = "default",
                 sleep: Callable[[float], None] = time.sleep):
        self.cluster = cluster
        self.namespace = namespace
        self.sleep = sleep
        self.state = RolloutState.PENDING

    def _transition(self, new_state: RolloutState) -> None:
        logger.info(f"Rollout state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def apply(self, spec: DeploymentSpec) -> None:
        """Submit deployment, service and ingress in one apply."""
        manifest = render_manifests_yaml(spec)
        logger.info(f"Applying manifests for {spec.name} (image {spec.image_reference})")
        try:
            result = self.cluster.apply(manifest)
        except (CommandError, CommandTimeout) as e:
            raise RolloutError(f"kubectl apply failed: {e}") from e
        for line in result.stdout.strip().splitlines():
            logger.info(f"  {line}")
        self._transition(RolloutState.SUBMITTED)

    def _is_converged(self, name: str, timeout: float) -> bool:
        try:
            deployment = self.cluster.get_deployment(name, namespace=self.namespace, timeout=timeout)
        except (CommandError, CommandTimeout) as e:
            logger.warning(f"Could not read deployment {name}: {e}")
            return False
        if deployment is None:
            return False

        reason = deployment_failure_reason(deployment)
        if reason:
            self._transition(RolloutState.FAILED)
            raise RolloutError(f"Deployment {name} failed to progress: {reason}")

        status = deployment.get("status", {})
        logger.info(
            f"  {name}: {status.get('readyReplicas', 0)}/{deployment.get('spec', {}).get('replicas', 1)} ready, "
            f"{status.get('updatedReplicas', 0)} updated"
        )
        return deployment_converged(deployment)

    def await_converged(self, name: str, policy: RetryPolicy) -> RolloutState:
        """Poll until all replicas are ready.

        Raises:
            RolloutError: the orchestrator reported failure or the policy ran out
        """
        self._transition(RolloutState.RECONCILING)
        try:
            poll_until_ready(
                lambda: self._is_converged(name, policy.per_attempt_timeout),
                policy,
                description=f"deployment/{name} rollout",
                sleep=self.sleep,
            )
        except ReadinessTimeout as e:
            self._transition(RolloutState.TIMED_OUT)
            raise RolloutError(f"Rollout of {name} did not converge: {e}") from e
        self._transition(RolloutState.CONVERGED)
        return self.state

    def log_cluster_status(self) -> None:
        try:
            result = self.cluster.resources()
        except (CommandError, CommandTimeout) as e:
            logger.warning(f"Could not list cluster resources: {e}")
            return
        logger.info("=== Cluster Status ===")
        for line in result.stdout.rstrip().splitlines():
            logger.info(line)

    def rollout(self, spec: DeploymentSpec, policy: RetryPolicy) -> RolloutState:
        """Apply the descriptor set and wait for convergence."""
        self.state = RolloutState.PENDING
        self.apply(spec)
        self.await_converged(spec.name, policy)
        self.log_cluster_status()
        return self.state
