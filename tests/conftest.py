import os

import boto3
import pytest
from moto import mock_aws

from deploy_pipeline.schemas import RetryPolicy
from deploy_pipeline.settings import Settings, get_settings
from tests.fixtures.pipeline_fixtures import FakeK3sHost, RecordingSleep

TEST_REGION = "us-west-2"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)


@pytest.fixture
def mocked_aws(aws_credentials):
    with mock_aws():
        yield


@pytest.fixture
def ec2_client(mocked_aws):
    return boto3.client("ec2", region_name=TEST_REGION)


@pytest.fixture
def settings(tmp_path):
    """Settings with short retry budgets and no .env lookup."""
    terraform_dir = tmp_path / "terraform"
    terraform_dir.mkdir()
    return Settings(
        _env_file=None,
        aws_region=TEST_REGION,
        container_port=5000,
        registry_username="Org",
        registry_token="ghp_secret_token",
        image_name="app",
        terraform_dir=str(terraform_dir),
        build_context=str(tmp_path / "app"),
        ssh_retry=RetryPolicy(max_attempts=3, interval=1, per_attempt_timeout=1),
        cluster_api_retry=RetryPolicy(max_attempts=3, interval=1, per_attempt_timeout=1),
        publish_retry=RetryPolicy(max_attempts=2, interval=1, per_attempt_timeout=1),
        rollout_timeout=30,
        rollout_poll_interval=5,
        verify_retry=RetryPolicy(max_attempts=10, interval=10, per_attempt_timeout=5),
    )


@pytest.fixture
def k3s_host():
    return FakeK3sHost()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
