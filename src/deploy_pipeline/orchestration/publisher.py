"""
Container image build and push through the Docker Engine API.

The tag is a moving pointer (`latest` by default), so publishing the same
context twice simply overwrites it; the layer cache only affects speed.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import docker
from docker.errors import DockerException

from deploy_pipeline.errors import BuildError
from deploy_pipeline.settings import Settings

logger = logging.getLogger(__name__)


class ImagePublisher:
    """Build an image from a context directory and push it to the registry."""

    def __init__(self, settings: Settings, client: Optional[Any] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        """Docker client, created on first use."""
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self.settings.docker_timeout)
            except DockerException as e:
                raise BuildError(f"Docker daemon unavailable: {e}") from e
        return self._client

    def _auth_config(self) -> Optional[Dict[str, str]]:
        if not (self.settings.registry_username and self.settings.registry_token):
            return None
        return {
            "username": self.settings.registry_username,
            "password": self.settings.registry_token.get_secret_value(),
        }

    def login(self) -> None:
        auth = self._auth_config()
        if auth is None:
            logger.warning("No registry credentials configured - relying on existing docker login")
            return
        try:
            self.client.login(registry=self.settings.registry, **auth)
        except DockerException as e:
            raise BuildError(f"Login to {self.settings.registry} failed: {e}") from e
        logger.info(f"Authenticated with {self.settings.registry} as {auth['username']}")

    def build(self, build_context: Path, reference: str) -> None:
        logger.info(f"Building {reference} from {build_context}")
        try:
            image, build_logs = self.client.images.build(
                path=str(build_context),
                tag=reference,
                cache_from=[reference],
                rm=True,
            )
        except DockerException as e:
            raise BuildError(f"Docker build failed: {e}") from e
        for chunk in build_logs:
            line = chunk.get("stream", "").rstrip() if isinstance(chunk, dict) else ""
            if line:
                logger.debug(line)
        logger.info(f"Built image {getattr(image, 'short_id', '?')} for {reference}")

    def push(self, repository: str, tag: str) -> Optional[str]:
        """Push and return the registry digest if the daemon reported one."""
        logger.info(f"Pushing {repository}:{tag}")
        digest = None
        try:
            for line in self.client.images.push(
                repository, tag=tag, stream=True, decode=True, auth_config=self._auth_config()
            ):
                if "error" in line:
                    detail = line.get("errorDetail", {}).get("message") or line["error"]
                    raise BuildError(f"Push of {repository}:{tag} failed: {detail}")
                aux = line.get("aux") or {}
                if aux.get("Digest"):
                    digest = aux["Digest"]
        except DockerException as e:
            raise BuildError(f"Push of {repository}:{tag} failed: {e}") from e
        return digest

    def publish(self, build_context: Union[str, Path], tag: str) -> str:
        """Build and push `<repository>:<tag>`; return the image reference.

        Raises:
            BuildError: missing context, daemon/API error or registry error
        """
        build_context = Path(build_context)
        if not (build_context / "Dockerfile").is_file():
            raise BuildError(f"No Dockerfile in build context: {build_context}")

        repository = self.settings.image_repository
        reference = f"{repository}:{tag}"
        self.login()
        self.build(build_context, reference)
        digest = self.push(repository, tag)
        if digest:
            logger.info(f"Pushed {reference} ({digest})")
        else:
            logger.info(f"Pushed {reference}")
        return reference
