import pytest

from deploy_pipeline.errors import PipelineStateError
from deploy_pipeline.infrastructure.cluster import KubectlCluster
from deploy_pipeline.orchestration.pipeline import DeploymentPipeline
from deploy_pipeline.state import PipelineResult, PipelineState, Stage, StageOutcome
from tests.fixtures.pipeline_fixtures import TEST_ADDRESS, TEST_IMAGE, FakeK3sHost


def test_instance_address_is_write_once():
    state = PipelineState()
    state.instance_address = TEST_ADDRESS

    with pytest.raises(PipelineStateError, match="already set"):
        state.instance_address = "198.51.100.7"
    assert state.instance_address == TEST_ADDRESS


def test_empty_instance_address_is_rejected():
    state = PipelineState()
    with pytest.raises(PipelineStateError):
        state.instance_address = ""
    assert state.instance_address is None


def test_remote_access_requires_a_confirmed_address():
    state = PipelineState()
    with pytest.raises(PipelineStateError):
        state.require_confirmed_address()

    state.instance_address = TEST_ADDRESS
    with pytest.raises(PipelineStateError, match="not been confirmed"):
        state.require_confirmed_address()

    state.address_confirmed = True
    assert state.require_confirmed_address() == TEST_ADDRESS


def test_image_reference_and_credential_guards():
    state = PipelineState()
    with pytest.raises(PipelineStateError, match="publish must succeed"):
        state.require_image_reference()
    with pytest.raises(PipelineStateError):
        state.require_credential()

    state.image_reference = TEST_IMAGE
    assert state.require_image_reference() == TEST_IMAGE


@pytest.fixture
def confirmed_state():
    state = PipelineState()
    state.instance_address = TEST_ADDRESS
    state.address_confirmed = True
    return state


@pytest.mark.parametrize("image_reference", [None, ""])
def test_rollout_stage_refuses_to_run_without_an_image(settings, confirmed_state, image_reference):
    host = FakeK3sHost()
    confirmed_state.image_reference = image_reference
    pipeline = DeploymentPipeline(settings, provisioner=object(), publisher=object(), diagnostics=object())

    with pytest.raises(PipelineStateError):
        pipeline.rollout(confirmed_state, KubectlCluster(host))

    assert host.apply_calls == 0


def test_remote_stages_refuse_to_run_before_ssh_is_confirmed(settings):
    state = PipelineState()
    state.instance_address = TEST_ADDRESS
    state.image_reference = TEST_IMAGE
    host = FakeK3sHost()
    cluster = KubectlCluster(host)
    pipeline = DeploymentPipeline(settings, provisioner=object(), publisher=object(), diagnostics=object())

    with pytest.raises(PipelineStateError):
        pipeline.wait_for_cluster_api(state, cluster)
    with pytest.raises(PipelineStateError):
        pipeline.rollout(state, cluster)
    with pytest.raises(PipelineStateError):
        pipeline.verify(state)

    assert host.commands == []


def test_stage_history_and_result_serialization(confirmed_state):
    confirmed_state.record(Stage.PROVISION, StageOutcome.success(), 1.23456)
    confirmed_state.record(Stage.WAIT_FOR_SSH, StageOutcome.failure("timed out", "diagnostics-x"))

    result = PipelineResult(
        success=False,
        stage_history=confirmed_state.stage_history,
        failed_stage=Stage.WAIT_FOR_SSH,
        reason="timed out",
    )
    data = result.to_dict()

    assert result.exit_code == 1
    assert [s["stage"] for s in data["stages"]] == ["provision", "wait_for_ssh"]
    assert data["stages"][0]["duration_seconds"] == 1.235
    assert data["stages"][1]["diagnostics_ref"] == "diagnostics-x"
    assert data["diagnostics"] is None
