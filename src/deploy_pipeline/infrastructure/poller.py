"""
Bounded polling and retry primitives.

Every "wait until X" in the pipeline (SSH port open, cluster API reachable,
replicas ready, HTTP 200) goes through poll_until_ready. Idempotent operations
that may fail transiently (image publish) go through retry_call.
"""
import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from deploy_pipeline.errors import ReadinessTimeout
from deploy_pipeline.schemas import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar('T')


def poll_until_ready(
    check: Callable[[], bool],
    policy: RetryPolicy,
    description: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Call `check` until it returns True or the policy is exhausted.

    The first success resolves the wait. After each failed attempt, the last
    one included, the poller sleeps `policy.interval`, so a check that never
    succeeds costs at least max_attempts * interval seconds. Exceptions raised
    by `check` are not caught.

    Returns:
        The attempt number (1-based) that succeeded

    Raises:
        ReadinessTimeout: all attempts returned False
    """
    start = clock()
    for attempt in range(1, policy.max_attempts + 1):
        if check():
            logger.info(f"✅ {description} ready after {attempt} attempt(s) "
                        f"({clock() - start:.1f}s)")
            return attempt
        logger.info(f"⏳ Waiting for {description}... "
                    f"(attempt {attempt}/{policy.max_attempts}, retrying in {policy.interval:g}s)")
        sleep(policy.interval)

    elapsed = clock() - start
    logger.error(f"❌ {description} not ready after {policy.max_attempts} attempts ({elapsed:.1f}s)")
    raise ReadinessTimeout(description, policy.max_attempts, elapsed)


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run an idempotent operation, retrying on the given exceptions.

    Raises:
        The last exception once `policy.max_attempts` attempts have failed
    """
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                logger.error(f"All {policy.max_attempts} attempts failed for {description}: {e}")
                raise
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} for {description} failed: {e}. "
                f"Retrying in {policy.interval:g}s"
            )
            sleep(policy.interval)
            attempt += 1
