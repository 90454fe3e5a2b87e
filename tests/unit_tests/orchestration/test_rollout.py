import pytest

from deploy_pipeline.errors import RolloutError
from deploy_pipeline.infrastructure.cluster import KubectlCluster
from deploy_pipeline.orchestration.rollout import (
    RolloutController,
    RolloutState,
    deployment_converged,
    deployment_failure_reason,
)
from deploy_pipeline.schemas import DeploymentSpec, RetryPolicy
from tests.fixtures.pipeline_fixtures import TEST_IMAGE, FakeK3sHost, RecordingSleep

POLICY = RetryPolicy(max_attempts=5, interval=2, per_attempt_timeout=1)


@pytest.fixture
def spec():
    return DeploymentSpec(name="re2ect-app", image_reference=TEST_IMAGE)


def make_controller(host):
    sleep = RecordingSleep()
    return RolloutController(KubectlCluster(host), sleep=sleep), sleep


def test_rollout_converges_once_replicas_are_ready(spec):
    host = FakeK3sHost(converge_after=3)
    controller, sleep = make_controller(host)

    assert controller.rollout(spec, POLICY) == RolloutState.CONVERGED
    assert host.status_polls["re2ect-app"] == 3
    assert sleep.calls == [2, 2]
    assert any(c.startswith("kubectl get pods,svc,ingress") for c in host.commands)


def test_reapplying_the_same_spec_is_a_noop(spec):
    host = FakeK3sHost()
    controller, _ = make_controller(host)

    controller.rollout(spec, POLICY)
    first = host.converged_state("re2ect-app")
    controller.rollout(spec, POLICY)

    assert host.apply_calls == 2
    assert host.converged_state("re2ect-app") == first
    assert first["generation"] == 1


def test_new_image_bumps_generation(spec):
    host = FakeK3sHost()
    controller, _ = make_controller(host)

    controller.rollout(spec, POLICY)
    controller.rollout(spec.model_copy(update={"image_reference": "ghcr.io/org/app:v2"}), POLICY)

    assert host.converged_state("re2ect-app")["generation"] == 2


def test_rollout_times_out_when_replicas_never_ready(spec):
    host = FakeK3sHost(converge_after=100)
    controller, sleep = make_controller(host)
    policy = RetryPolicy(max_attempts=3, interval=5, per_attempt_timeout=1)

    with pytest.raises(RolloutError, match="did not converge"):
        controller.rollout(spec, policy)

    assert controller.state == RolloutState.TIMED_OUT
    assert host.status_polls["re2ect-app"] == 3
    assert sleep.total >= 15


def test_progress_deadline_fails_fast(spec):
    host = FakeK3sHost(progress_deadline_exceeded=True, converge_after=100)
    controller, sleep = make_controller(host)

    with pytest.raises(RolloutError, match="ProgressDeadlineExceeded"):
        controller.rollout(spec, POLICY)

    assert host.status_polls["re2ect-app"] == 1
    assert sleep.calls == []
    assert controller.state == RolloutState.FAILED


def test_apply_failure_is_a_rollout_error(spec):
    controller, _ = make_controller(FakeK3sHost(fail_apply=True))

    with pytest.raises(RolloutError, match="kubectl apply failed"):
        controller.rollout(spec, POLICY)

    assert controller.state == RolloutState.PENDING


def test_stale_observed_generation_is_not_converged():
    deployment = {
        "metadata": {"generation": 2},
        "spec": {"replicas": 1},
        "status": {"observedGeneration": 1, "replicas": 1, "updatedReplicas": 1,
                   "readyReplicas": 1, "availableReplicas": 1},
    }
    assert not deployment_converged(deployment)
    deployment["status"]["observedGeneration"] = 2
    assert deployment_converged(deployment)


def test_old_replicas_still_terminating_is_not_converged():
    deployment = {
        "metadata": {"generation": 1},
        "spec": {"replicas": 1},
        "status": {"observedGeneration": 1, "replicas": 2, "updatedReplicas": 1,
                   "readyReplicas": 1, "availableReplicas": 1},
    }
    assert not deployment_converged(deployment)


def test_failure_reason_only_for_progressing_false():
    assert deployment_failure_reason({"status": {"conditions": [
        {"type": "Progressing", "status": "True", "reason": "NewReplicaSetAvailable"},
    ]}}) is None
    assert deployment_failure_reason({"status": {}}) is None
