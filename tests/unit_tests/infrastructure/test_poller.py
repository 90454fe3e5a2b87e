import pytest

from deploy_pipeline.errors import BuildError, ReadinessTimeout
from deploy_pipeline.infrastructure.poller import poll_until_ready, retry_call
from deploy_pipeline.schemas import RetryPolicy


class FakeClock:
    """Clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self):
        return self.now


def counting_check(succeed_on=None):
    calls = {"count": 0}

    def check():
        calls["count"] += 1
        return succeed_on is not None and calls["count"] >= succeed_on

    return check, calls


@pytest.mark.parametrize("attempts,interval", [(1, 0.5), (3, 2), (10, 10)])
def test_never_ready_times_out_after_exactly_max_attempts(attempts, interval):
    clock = FakeClock()
    check, calls = counting_check()
    policy = RetryPolicy(max_attempts=attempts, interval=interval)

    with pytest.raises(ReadinessTimeout) as exc_info:
        poll_until_ready(check, policy, "never", sleep=clock.sleep, clock=clock)

    assert calls["count"] == attempts
    assert exc_info.value.attempts == attempts
    assert clock.now >= attempts * interval
    assert exc_info.value.elapsed >= attempts * interval


@pytest.mark.parametrize("k", [1, 2, 5])
def test_success_on_attempt_k_stops_without_extra_sleeps(k):
    clock = FakeClock()
    check, calls = counting_check(succeed_on=k)
    policy = RetryPolicy(max_attempts=5, interval=3)

    attempt = poll_until_ready(check, policy, "eventually", sleep=clock.sleep, clock=clock)

    assert attempt == k
    assert calls["count"] == k
    assert clock.sleeps == [3] * (k - 1)


def test_single_flaky_success_resolves_the_wait():
    clock = FakeClock()
    results = iter([False, True, False, False])
    policy = RetryPolicy(max_attempts=4, interval=1)

    assert poll_until_ready(lambda: next(results), policy, sleep=clock.sleep, clock=clock) == 2


def test_check_exceptions_propagate():
    def check():
        raise RuntimeError("probe crashed")

    with pytest.raises(RuntimeError, match="probe crashed"):
        poll_until_ready(check, RetryPolicy(max_attempts=3, interval=0), sleep=lambda s: None)


def test_policy_rejects_unbounded_values():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0, interval=1)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=1, interval=-1)


def test_policy_total_budget_and_from_timeout():
    policy = RetryPolicy(max_attempts=10, interval=10, per_attempt_timeout=5)
    assert policy.total_budget == 150

    derived = RetryPolicy.from_timeout(180, 5, per_attempt_timeout=30)
    assert derived.max_attempts == 36
    assert derived.interval == 5

    assert RetryPolicy.from_timeout(7, 5).max_attempts == 2


def test_retry_call_retries_only_listed_errors():
    sleeps = []
    outcomes = iter([BuildError("first"), BuildError("second"), "ghcr.io/org/app:latest"])

    def publish():
        item = next(outcomes)
        if isinstance(item, Exception):
            raise item
        return item

    policy = RetryPolicy(max_attempts=3, interval=15)
    assert retry_call(publish, policy, retry_on=(BuildError,), sleep=sleeps.append) == "ghcr.io/org/app:latest"
    assert sleeps == [15, 15]


def test_retry_call_reraises_last_error_when_exhausted():
    calls = []

    def always_fails():
        calls.append(1)
        raise BuildError(f"attempt {len(calls)}")

    with pytest.raises(BuildError, match="attempt 2"):
        retry_call(always_fails, RetryPolicy(max_attempts=2, interval=0), retry_on=(BuildError,),
                   sleep=lambda s: None)
    assert len(calls) == 2


def test_retry_call_does_not_retry_other_errors():
    calls = []

    def broken():
        calls.append(1)
        raise KeyError("bug")

    with pytest.raises(KeyError):
        retry_call(broken, RetryPolicy(max_attempts=5, interval=0), retry_on=(BuildError,),
                   sleep=lambda s: None)
    assert len(calls) == 1
