# src/deploy_pipeline/settings.py
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from deploy_pipeline.schemas import DeploymentSpec, ResourceQuantities, RetryPolicy


class Settings(BaseSettings):
    """
    Single source of truth for every pipeline option.

    Configuration precedence:
    1. Keyword arguments (tests, CLI overrides)
    2. Environment variables
    3. .env file (if exists)
    4. Default values in this class

    Nested retry policies are read with a double underscore and must name
    both required fields, e.g. VERIFY_RETRY__MAX_ATTEMPTS=20 together with
    VERIFY_RETRY__INTERVAL=5.

    Usage:
        from deploy_pipeline.settings import get_settings
        settings = get_settings()
        port = settings.container_port
    """

    # Application Settings
    app_name: str = Field(
        default="re2ect-app",
        description="Deployment name; service and ingress names derive from it"
    )

    # AWS Core Settings
    aws_region: str = Field(
        default="us-west-2",
        alias="AWS_REGION"
    )

    container_port: int = Field(
        default=5000,
        alias="FLASK_PORT",
        ge=1,
        le=65535,
        description="Port the application listens on inside the container"
    )

    # Registry Configuration
    registry: str = Field(
        default="ghcr.io",
        description="Container registry host"
    )

    registry_username: Optional[str] = Field(
        default=None,
        alias="GHCR_USERNAME",
        description="Registry owner/namespace, also passed to Terraform"
    )

    registry_token: Optional[SecretStr] = Field(
        default=None,
        alias="GHCR_TOKEN",
        description="Short-lived registry token supplied by CI"
    )

    image_name: str = Field(default="re2ect-app")

    image_tag: str = Field(
        default="latest",
        alias="IMAGE_TAG"
    )

    build_context: str = Field(
        default="app",
        description="Docker build context directory"
    )

    docker_timeout: int = Field(
        default=600,
        description="Docker API timeout in seconds"
    )

    # Terraform Configuration
    terraform_dir: str = Field(default="terraform")
    terraform_binary: str = Field(default="terraform")
    terraform_init_timeout: int = Field(default=300)
    terraform_apply_timeout: int = Field(default=1800)
    terraform_output_timeout: int = Field(default=60)

    # Remote Host Configuration
    ssh_user: str = Field(default="ec2-user")
    ssh_port: int = Field(default=22, ge=1, le=65535)
    ssh_connect_timeout: int = Field(default=10)
    remote_command_timeout: int = Field(
        default=60,
        description="Timeout for a single command run over SSH"
    )
    kubectl_binary: str = Field(default="kubectl")

    # Deployment Shape
    replica_count: int = Field(default=1, ge=1)
    service_port: int = Field(
        default=80,
        ge=1,
        le=65535,
        description="ClusterIP Service port; internal to the cluster"
    )
    ingress_port: int = Field(
        default=80,
        ge=1,
        le=65535,
        description="Host port the k3s ingress controller (traefik) listens on"
    )
    resource_limit_cpu: str = Field(default="500m")
    resource_limit_memory: str = Field(default="256Mi")
    resource_request_cpu: str = Field(default="100m")
    resource_request_memory: str = Field(default="128Mi")

    # Retry Policies
    ssh_retry: RetryPolicy = Field(
        default=RetryPolicy(max_attempts=30, interval=10, per_attempt_timeout=5)
    )
    cluster_api_retry: RetryPolicy = Field(
        default=RetryPolicy(max_attempts=30, interval=10, per_attempt_timeout=30)
    )
    publish_retry: RetryPolicy = Field(
        default=RetryPolicy(max_attempts=3, interval=15, per_attempt_timeout=600)
    )
    rollout_timeout: int = Field(
        default=180,
        description="Seconds to wait for all replicas to become ready"
    )
    rollout_poll_interval: int = Field(default=5, gt=0)
    verify_retry: RetryPolicy = Field(
        default=RetryPolicy(max_attempts=10, interval=10, per_attempt_timeout=5)
    )

    # Diagnostics
    ingress_namespace: str = Field(default="kube-system")
    ingress_deployment: str = Field(
        default="traefik",
        description="Ingress controller deployment bundled with k3s"
    )
    diagnostic_ports: List[int] = Field(default=[22, 80, 6443])
    diagnostic_log_lines: int = Field(default=100, gt=0)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    report_file: Optional[str] = Field(
        default=None,
        description="Write the JSON run report here when set"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one the logging module knows."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator('registry_username', 'image_name')
    @classmethod
    def lowercase_registry_path(cls, v):
        """Registry paths must be lowercase (repository owners often are not)."""
        return v.lower() if v else v

    @property
    def image_repository(self) -> str:
        """Registry repository without the tag."""
        if self.registry_username:
            return f"{self.registry}/{self.registry_username}/{self.image_name}"
        return f"{self.registry}/{self.image_name}"

    @property
    def image_reference(self) -> str:
        return f"{self.image_repository}:{self.image_tag}"

    @property
    def rollout_retry(self) -> RetryPolicy:
        """Rollout poll policy derived from the rollout timeout."""
        return RetryPolicy.from_timeout(
            self.rollout_timeout,
            self.rollout_poll_interval,
            per_attempt_timeout=self.remote_command_timeout,
        )

    def entry_point_url(self, address: str) -> str:
        """Public entry point served by the ingress on the instance."""
        if self.ingress_port == 80:
            return f"http://{address}/"
        return f"http://{address}:{self.ingress_port}/"

    def deployment_spec(self, image_reference: str) -> DeploymentSpec:
        """Build the desired deployment state for an image reference."""
        return DeploymentSpec(
            name=self.app_name,
            image_reference=image_reference,
            replica_count=self.replica_count,
            container_port=self.container_port,
            service_port=self.service_port,
            resource_limits=ResourceQuantities(
                cpu=self.resource_limit_cpu, memory=self.resource_limit_memory
            ),
            resource_requests=ResourceQuantities(
                cpu=self.resource_request_cpu, memory=self.resource_request_memory
            ),
        )

    def terraform_variables(self) -> Dict[str, str]:
        """Named variables passed to `terraform apply`.

        Contains the registry token in clear text; callers must mask values
        before logging.
        """
        variables = {}
        if self.registry_username:
            variables["ghcr_username"] = self.registry_username
        if self.registry_token:
            variables["ghcr_token"] = self.registry_token.get_secret_value()
        return variables

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    This ensures we only create one Settings instance per process.
    """
    return Settings()
