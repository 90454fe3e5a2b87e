"""
Acceptance check against the public entry point.

"Cluster says ready" is not the same as "serving traffic": this is the
pipeline's final gate and succeeds only on the exact expected status.
"""
import logging
import time
from typing import Callable, Optional

import requests

from deploy_pipeline.errors import ReadinessTimeout, VerificationError
from deploy_pipeline.infrastructure.poller import poll_until_ready
from deploy_pipeline.schemas import RetryPolicy, VerificationResult

logger = logging.getLogger(__name__)


def verify_reachable(
    url: str,
    policy: RetryPolicy,
    expected_status: int = 200,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> VerificationResult:
    """GET `url` until it returns `expected_status`.

    Each request is bounded by policy.per_attempt_timeout so a hung
    connection costs one attempt, not the whole budget.

    Raises:
        VerificationError: the budget ran out without the expected status
    """
    http = session or requests.Session()
    observed = {"status": None, "error": None}

    def attempt() -> bool:
        try:
            response = http.get(url, timeout=policy.per_attempt_timeout, allow_redirects=False)
        except requests.RequestException as e:
            observed["status"], observed["error"] = None, str(e)
            logger.info(f"  {url}: no response ({type(e).__name__})")
            return False
        observed["status"], observed["error"] = response.status_code, None
        logger.info(f"  {url}: HTTP {response.status_code}")
        return response.status_code == expected_status

    start = time.monotonic()
    try:
        attempts = poll_until_ready(attempt, policy, description=f"HTTP {expected_status} from {url}", sleep=sleep)
    except ReadinessTimeout as e:
        raise VerificationError(
            f"Application did not return {expected_status} at {url} "
            f"(last status: {observed['status'] or 'none'})",
            attempts=e.attempts,
            last_status=observed["status"],
            last_error=observed["error"],
        ) from e
    finally:
        if session is None:
            http.close()

    logger.info(f"✅ Application responded with HTTP {expected_status}")
    return VerificationResult(
        url=url,
        attempts=attempts,
        status_code=expected_status,
        elapsed_seconds=round(time.monotonic() - start, 3),
    )
