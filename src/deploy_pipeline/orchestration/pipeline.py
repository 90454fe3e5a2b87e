"""
Pipeline driver.

Stages run strictly in order, each gated on the previous one:

    provision -> wait_for_ssh -> wait_for_cluster_api -> publish -> rollout -> verify

A stage that raises PipelineError aborts the run. Failures after provisioning
trigger a diagnostics collection; a provisioning failure does not, since
there is no instance to inspect. Provisioned infrastructure and pushed
images are never rolled back.
"""
import json
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from deploy_pipeline.errors import BuildError, PipelineError
from deploy_pipeline.infrastructure.cluster import KubectlCluster
from deploy_pipeline.infrastructure.poller import poll_until_ready, retry_call
from deploy_pipeline.infrastructure.provisioner import TerraformProvisioner
from deploy_pipeline.infrastructure.remote import RemoteShell, tcp_port_open
from deploy_pipeline.monitoring.diagnostics import DiagnosticsCollector, DiagnosticsReport
from deploy_pipeline.monitoring.verifier import verify_reachable
from deploy_pipeline.orchestration.publisher import ImagePublisher
from deploy_pipeline.orchestration.rollout import RolloutController
from deploy_pipeline.settings import Settings
from deploy_pipeline.state import PipelineResult, PipelineState, Stage, StageOutcome
from deploy_pipeline.utils.decorators import log_operation

logger = logging.getLogger(__name__)


class DeploymentPipeline:
    """Sequence every stage and decide continue / diagnose / abort."""

    def __init__(
        self,
        settings: Settings,
        provisioner: Optional[TerraformProvisioner] = None,
        publisher: Optional[ImagePublisher] = None,
        diagnostics: Optional[DiagnosticsCollector] = None,
        remote_factory: Optional[Callable[[str, Path], RemoteShell]] = None,
        port_check: Callable[[str, int, float], bool] = tcp_port_open,
        verifier: Callable[..., object] = verify_reachable,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.provisioner = provisioner or TerraformProvisioner(settings)
        self.publisher = publisher or ImagePublisher(settings)
        self.diagnostics = diagnostics or DiagnosticsCollector(settings)
        self.remote_factory = remote_factory or self._default_remote
        self.port_check = port_check
        self.verifier = verifier
        self.sleep = sleep

    def _default_remote(self, address: str, key_path: Path) -> RemoteShell:
        return RemoteShell(
            address,
            key_path,
            user=self.settings.ssh_user,
            port=self.settings.ssh_port,
            connect_timeout=self.settings.ssh_connect_timeout,
            default_timeout=self.settings.remote_command_timeout,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @log_operation("Provision infrastructure")
    def provision(self, state: PipelineState) -> None:
        result = self.provisioner.provision()
        state.instance_address = result.address
        state.credential = result.credential

    @log_operation("Wait for SSH")
    def wait_for_ssh(self, state: PipelineState) -> None:
        address = state.instance_address
        policy = self.settings.ssh_retry
        poll_until_ready(
            lambda: self.port_check(address, self.settings.ssh_port, policy.per_attempt_timeout),
            policy,
            description=f"SSH on {address}:{self.settings.ssh_port}",
            sleep=self.sleep,
        )
        state.address_confirmed = True

    @log_operation("Wait for k3s API")
    def wait_for_cluster_api(self, state: PipelineState, cluster: KubectlCluster) -> None:
        state.require_confirmed_address()
        policy = self.settings.cluster_api_retry
        poll_until_ready(
            lambda: cluster.api_reachable(timeout=policy.per_attempt_timeout),
            policy,
            description="k3s API",
            sleep=self.sleep,
        )

    @log_operation("Build and push image")
    def publish(self, state: PipelineState) -> None:
        state.image_reference = retry_call(
            lambda: self.publisher.publish(self.settings.build_context, self.settings.image_tag),
            self.settings.publish_retry,
            retry_on=(BuildError,),
            description="image publish",
            sleep=self.sleep,
        )

    @log_operation("Deploy application")
    def rollout(self, state: PipelineState, cluster: KubectlCluster) -> None:
        state.require_confirmed_address()
        spec = self.settings.deployment_spec(state.require_image_reference())
        controller = RolloutController(cluster, sleep=self.sleep)
        controller.rollout(spec, self.settings.rollout_retry)

    @log_operation("Test application")
    def verify(self, state: PipelineState) -> None:
        url = self.settings.entry_point_url(state.require_confirmed_address())
        self.verifier(url, self.settings.verify_retry, sleep=self.sleep)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def _fail(self, state: PipelineState, stage: Stage, error: PipelineError, started: float,
              cluster: Optional[KubectlCluster] = None) -> PipelineResult:
        report: Optional[DiagnosticsReport] = None
        if stage != Stage.PROVISION:
            report = self.diagnostics.collect(
                state.instance_address,
                cluster if state.address_confirmed else None,
            )
            logger.error(report.render())

        state.record(
            stage,
            StageOutcome.failure(str(error), report.reference if report else None),
            duration_seconds=time.monotonic() - started,
        )
        logger.error(f"❌ Pipeline aborted at stage '{stage.value}': {error}")
        return PipelineResult(
            success=False,
            stage_history=state.stage_history,
            failed_stage=stage,
            reason=str(error),
            error_type=type(error).__name__,
            diagnostics=report,
            instance_address=state.instance_address,
            image_reference=state.image_reference,
        )

    def run(self) -> PipelineResult:
        """Execute every stage in order; all-or-nothing."""
        state = PipelineState()
        logger.info("🚀 Starting deployment pipeline")

        started = time.monotonic()
        try:
            self.provision(state)
        except PipelineError as e:
            return self._fail(state, Stage.PROVISION, e, started)
        state.record(Stage.PROVISION, StageOutcome.success(), time.monotonic() - started)

        with state.require_credential().materialize() as key_path:
            remote = self.remote_factory(state.instance_address, key_path)
            cluster = KubectlCluster(
                remote,
                kubectl=self.settings.kubectl_binary,
                timeout=self.settings.remote_command_timeout,
            )
            logger.info(f"🔗 SSH: {remote.connection_command()}")

            stages = [
                (Stage.WAIT_FOR_SSH, lambda: self.wait_for_ssh(state)),
                (Stage.WAIT_FOR_CLUSTER_API, lambda: self.wait_for_cluster_api(state, cluster)),
                (Stage.PUBLISH, lambda: self.publish(state)),
                (Stage.ROLLOUT, lambda: self.rollout(state, cluster)),
                (Stage.VERIFY, lambda: self.verify(state)),
            ]
            for stage, run_stage in stages:
                started = time.monotonic()
                try:
                    run_stage()
                except PipelineError as e:
                    return self._fail(state, stage, e, started, cluster)
                state.record(stage, StageOutcome.success(), time.monotonic() - started)

        logger.info(f"✅ Deployment pipeline completed: {state.image_reference} "
                    f"serving at {self.settings.entry_point_url(state.instance_address)}")
        return PipelineResult(
            success=True,
            stage_history=state.stage_history,
            instance_address=state.instance_address,
            image_reference=state.image_reference,
        )


def write_report(result: PipelineResult, report_file: str) -> None:
    """Write the run report as JSON."""
    path = Path(report_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_dict(), indent=2, default=str))
    logger.info(f"Run report written to {path}")
