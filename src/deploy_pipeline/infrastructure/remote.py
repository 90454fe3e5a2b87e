"""
SSH access to the provisioned instance.

The private key produced by Terraform lives only in memory until the pipeline
needs it on disk; `SSHCredential.materialize()` writes it to a private
temporary directory (0600) and removes it when the run leaves the block.
"""
import logging
import os
import shutil
import socket
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from pydantic import SecretStr

from deploy_pipeline.errors import PipelineStateError
from deploy_pipeline.utils.shell import CommandResult, run_command

logger = logging.getLogger(__name__)

PEM_HEADER = "-----BEGIN"


class SSHCredential:
    """Private key material scoped to one pipeline run."""

    def __init__(self, private_key: str):
        self._private_key = SecretStr(private_key)
        self._key_path: Optional[Path] = None

    def __repr__(self) -> str:
        return "SSHCredential(private_key='**********')"

    __str__ = __repr__

    def looks_like_pem(self) -> bool:
        return self._private_key.get_secret_value().lstrip().startswith(PEM_HEADER)

    @property
    def key_path(self) -> Path:
        """Path of the key file while materialized."""
        if self._key_path is None:
            raise PipelineStateError("SSH credential is not materialized")
        return self._key_path

    @contextmanager
    def materialize(self) -> Iterator[Path]:
        """Write the key to a private temp file for the duration of the block."""
        key_dir = Path(tempfile.mkdtemp(prefix="deploy-key-"))
        key_path = key_dir / "deploy_key"
        try:
            os.chmod(key_dir, stat.S_IRWXU)
            material = self._private_key.get_secret_value()
            if not material.endswith("\n"):
                material += "\n"
            # Create with 0600 before any bytes are written
            fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, stat.S_IRUSR | stat.S_IWUSR)
            with os.fdopen(fd, "w") as f:
                f.write(material)
            self._key_path = key_path
            logger.debug(f"SSH key materialized at {key_path}")
            yield key_path
        finally:
            self._key_path = None
            shutil.rmtree(key_dir, ignore_errors=True)
            logger.debug("SSH key removed")


def tcp_port_open(host: str, port: int, timeout: float) -> bool:
    """Return True if a TCP connection to host:port succeeds within timeout."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.debug(f"TCP probe {host}:{port} failed: {e}")
        return False


class RemoteShell:
    """Run commands on the instance through the OpenSSH client.

    The only contract is "run a command, capture stdout and exit code".
    """

    def __init__(self, address: str, key_path: Path, user: str = "ec2-user",
                 port: int = 22, connect_timeout: int = 10, default_timeout: float = 60,
                 ssh_binary: str = "ssh"):
        self.address = address
        self.key_path = Path(key_path)
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout
        self.default_timeout = default_timeout
        self.ssh_binary = ssh_binary

    def ssh_args(self) -> List[str]:
        """OpenSSH command prefix for this host."""
        return [
            self.ssh_binary,
            "-i", str(self.key_path),
            "-p", str(self.port),
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "LogLevel=ERROR",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            f"{self.user}@{self.address}",
        ]

    def run(self, command: str, timeout: Optional[float] = None,
            input_text: Optional[str] = None) -> CommandResult:
        """Run `command` remotely. Non-zero exits are returned, not raised."""
        timeout = timeout or self.default_timeout
        logger.debug(f"[{self.address}] $ {command}")
        return run_command(self.ssh_args() + [command], timeout=timeout, input_text=input_text)

    def connection_command(self) -> str:
        """Human-readable SSH command for the run log."""
        return f"ssh -i <deploy_key> -p {self.port} {self.user}@{self.address}"
