"""
Exception taxonomy for the deployment pipeline.

Every stage raises a subclass of PipelineError; the pipeline driver turns it
into a failed stage outcome. Anything else escaping a stage is a bug and is
left to propagate.
"""
from typing import Optional, Sequence


class PipelineError(Exception):
    """Base class for all expected pipeline failures."""
    pass


class ProvisionError(PipelineError):
    """Infrastructure apply/output failed. Never retried."""
    pass


class BuildError(PipelineError):
    """Image build or push failed. Safe to retry."""
    pass


class RolloutError(PipelineError):
    """Manifest submission failed or the deployment never converged."""
    pass


class VerificationError(PipelineError):
    """The public entry point never returned the expected status."""

    def __init__(self, message: str, attempts: int = 0,
                 last_status: Optional[int] = None, last_error: Optional[str] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status
        self.last_error = last_error


class PipelineStateError(PipelineError):
    """A stage precondition on the shared pipeline state was violated."""
    pass


class ReadinessTimeout(PipelineError):
    """A readiness poll exhausted its retry policy."""

    def __init__(self, description: str, attempts: int, elapsed: float):
        super().__init__(
            f"Timed out waiting for {description} after {attempts} attempts ({elapsed:.1f}s)"
        )
        self.description = description
        self.attempts = attempts
        self.elapsed = elapsed


class CommandError(PipelineError):
    """An external command exited non-zero."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr"
        super().__init__(f"{self.command[0]} exited with {returncode}: {detail}")


class CommandTimeout(PipelineError):
    """An external command did not finish within its timeout."""

    def __init__(self, args: Sequence[str], timeout: float):
        self.command = list(args)
        self.timeout = timeout
        super().__init__(f"{self.command[0]} did not finish within {timeout:.0f}s")
