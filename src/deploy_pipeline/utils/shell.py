"""Timeout-bounded execution of external commands (terraform, ssh)."""
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from deploy_pipeline.errors import CommandError, CommandTimeout

logger = logging.getLogger(__name__)

MASK = "****"


@dataclass
class CommandResult:
    """Captured result of an external command."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        """Raise CommandError unless the command exited 0."""
        if self.returncode != 0:
            raise CommandError(self.args, self.returncode, self.stderr)
        return self


def mask_args(args: Sequence[str], secrets: Iterable[str] = ()) -> List[str]:
    """Replace every occurrence of a secret value in a command line."""
    secrets = [s for s in secrets if s]
    masked = []
    for arg in args:
        for secret in secrets:
            arg = arg.replace(secret, MASK)
        masked.append(arg)
    return masked


def run_command(
    args: Sequence[str],
    timeout: float,
    cwd: Optional[Union[str, Path]] = None,
    input_text: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    secrets: Iterable[str] = (),
    check: bool = False,
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        args: Command and arguments, never a shell string
        timeout: Seconds before the process is killed
        cwd: Working directory
        input_text: Text piped to stdin
        env: Full environment for the child (inherits ours when None)
        secrets: Values masked when the command line is logged
        check: Raise CommandError on a non-zero exit

    Returns:
        CommandResult with decoded stdout/stderr

    Raises:
        CommandTimeout: the process exceeded `timeout`
        CommandError: the binary is missing, or `check` and non-zero exit
    """
    args = [str(a) for a in args]
    logger.debug(f"Running: {' '.join(mask_args(args, secrets))}")
    try:
        completed = subprocess.run(
            args,
            cwd=str(cwd) if cwd else None,
            input=input_text,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"{args[0]} timed out after {timeout}s")
        raise CommandTimeout(args, timeout)
    except FileNotFoundError:
        raise CommandError(args, 127, f"{args[0]}: command not found")

    result = CommandResult(
        args=args,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if check:
        result.check()
    return result
