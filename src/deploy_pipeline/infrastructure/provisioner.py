"""
Terraform provisioner for the k3s host.

Terraform is an opaque external process: init, apply with named variables,
then read the `public_ip` and `ssh_private_key` outputs. A failed apply may
leave partial infrastructure behind, so nothing here retries.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from deploy_pipeline.errors import CommandError, CommandTimeout, ProvisionError
from deploy_pipeline.infrastructure.remote import SSHCredential
from deploy_pipeline.settings import Settings
from deploy_pipeline.utils.shell import CommandResult, mask_args, run_command

logger = logging.getLogger(__name__)

ADDRESS_OUTPUT = "public_ip"
KEY_OUTPUT = "ssh_private_key"
SENSITIVE_NAMES = ("token", "password", "secret", "key")


def sensitive_values(variables: Dict[str, str]) -> List[str]:
    """Values of variables whose name marks them as credentials."""
    return [v for k, v in variables.items() if any(s in k.lower() for s in SENSITIVE_NAMES)]


@dataclass
class ProvisionResult:
    address: str
    credential: SSHCredential


class TerraformProvisioner:
    """Apply the Terraform configuration and extract host access details."""

    def __init__(self, settings: Settings, runner: Callable[..., CommandResult] = run_command):
        self.settings = settings
        self.runner = runner
        self.working_dir = Path(settings.terraform_dir)
        self.binary = settings.terraform_binary

    def _env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env["TF_IN_AUTOMATION"] = "1"
        env.setdefault("AWS_REGION", self.settings.aws_region)
        return env

    def _terraform(self, args: List[str], timeout: int, secrets: Sequence[str] = ()) -> CommandResult:
        command = [self.binary, *args]
        logger.info(f"$ {' '.join(mask_args(command, secrets))}")
        try:
            result = self.runner(
                command,
                timeout=timeout,
                cwd=self.working_dir,
                env=self._env(),
                secrets=secrets,
            )
        except (CommandError, CommandTimeout) as e:
            raise ProvisionError(f"terraform {args[0]} failed: {e}") from e
        if not result.ok:
            stderr = mask_args([result.stderr], secrets)[0]
            tail = "\n".join(stderr.strip().splitlines()[-10:])
            raise ProvisionError(f"terraform {args[0]} exited with {result.returncode}:\n{tail}")
        return result

    def init(self) -> None:
        self._terraform(["init", "-input=false", "-no-color"], self.settings.terraform_init_timeout)

    def apply(self, variables: Dict[str, str]) -> None:
        args = ["apply", "-auto-approve", "-input=false", "-no-color"]
        for name, value in variables.items():
            args.extend(["-var", f"{name}={value}"])
        self._terraform(args, self.settings.terraform_apply_timeout, secrets=sensitive_values(variables))

    def output(self, name: str) -> str:
        result = self._terraform(["output", "-raw", name], self.settings.terraform_output_timeout)
        return result.stdout

    def provision(self, variables: Optional[Dict[str, str]] = None) -> ProvisionResult:
        """Create or update the instance and return its address and key.

        Raises:
            ProvisionError: any terraform step failed or produced unusable output
        """
        if not self.working_dir.is_dir():
            raise ProvisionError(f"Terraform directory not found: {self.working_dir}")
        if variables is None:
            variables = self.settings.terraform_variables()

        self.init()
        self.apply(variables)

        address = self.output(ADDRESS_OUTPUT).strip()
        if not address:
            raise ProvisionError("No EC2 instance available: terraform output public_ip is empty")

        credential = SSHCredential(self.output(KEY_OUTPUT))
        if not credential.looks_like_pem():
            raise ProvisionError(f"terraform output {KEY_OUTPUT} is not PEM key material")

        logger.info(f"Using EC2 instance: {address}")
        return ProvisionResult(address=address, credential=credential)
