import pytest
import requests

from deploy_pipeline.errors import VerificationError
from deploy_pipeline.monitoring.verifier import verify_reachable
from deploy_pipeline.schemas import RetryPolicy
from tests.fixtures.pipeline_fixtures import FakeSession, RecordingSleep

URL = "http://203.0.113.10/"
POLICY = RetryPolicy(max_attempts=10, interval=10, per_attempt_timeout=5)


def test_first_200_succeeds_without_sleeping():
    session = FakeSession([200])
    sleep = RecordingSleep()

    result = verify_reachable(URL, POLICY, session=session, sleep=sleep)

    assert result.attempts == 1
    assert result.status_code == 200
    assert result.url == URL
    assert sleep.calls == []
    assert session.calls == [{"url": URL, "timeout": 5}]


def test_connection_errors_and_bad_gateway_are_retried():
    session = FakeSession([
        requests.ConnectionError("connection refused"),
        requests.Timeout("read timed out"),
        502,
        200,
    ])
    sleep = RecordingSleep()

    result = verify_reachable(URL, POLICY, session=session, sleep=sleep)

    assert result.attempts == 4
    assert sleep.calls == [10, 10, 10]


def test_persistent_502_exhausts_the_budget():
    session = FakeSession([502])
    sleep = RecordingSleep()

    with pytest.raises(VerificationError) as exc_info:
        verify_reachable(URL, POLICY, session=session, sleep=sleep)

    error = exc_info.value
    assert error.attempts == 10
    assert error.last_status == 502
    assert error.last_error is None
    assert len(session.calls) == 10
    assert sleep.total >= 100


def test_last_error_is_kept_when_nothing_answered():
    session = FakeSession([requests.ConnectionError("Max retries exceeded")])

    with pytest.raises(VerificationError, match="last status: none") as exc_info:
        verify_reachable(URL, RetryPolicy(max_attempts=2, interval=0), session=session, sleep=lambda s: None)

    assert exc_info.value.last_status is None
    assert "Max retries exceeded" in exc_info.value.last_error


def test_only_the_exact_status_counts():
    session = FakeSession([201])
    with pytest.raises(VerificationError):
        verify_reachable(URL, RetryPolicy(max_attempts=3, interval=0), session=session, sleep=lambda s: None)

    assert verify_reachable(URL, RetryPolicy(max_attempts=1, interval=0), expected_status=201,
                            session=FakeSession([201]), sleep=lambda s: None).attempts == 1
