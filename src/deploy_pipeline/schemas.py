##################################
# --- Pipeline data models --- #
##################################

import math
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

DEFAULT_CONTAINER_PORT = 5000
DEFAULT_SERVICE_PORT = 80


class RetryPolicy(BaseModel):
    """Bounded retry budget for a poll loop or a retryable operation."""
    max_attempts: int = Field(gt=0, description="Number of attempts before giving up.")
    interval: float = Field(ge=0, description="Seconds to sleep after a failed attempt.")
    per_attempt_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound in seconds on a single attempt.",
    )

    model_config = ConfigDict(frozen=True)

    @property
    def total_budget(self) -> float:
        """Worst-case wall clock for the whole loop."""
        return self.max_attempts * (self.interval + self.per_attempt_timeout)

    @classmethod
    def from_timeout(cls, timeout: float, interval: float,
                     per_attempt_timeout: float = 30.0) -> "RetryPolicy":
        """Derive a policy that keeps polling for roughly `timeout` seconds."""
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if interval <= 0:
            return cls(max_attempts=1, interval=0, per_attempt_timeout=per_attempt_timeout)
        return cls(
            max_attempts=max(1, math.ceil(timeout / interval)),
            interval=interval,
            per_attempt_timeout=per_attempt_timeout,
        )


class ResourceQuantities(BaseModel):
    """Kubernetes cpu/memory quantities."""
    cpu: str = Field(json_schema_extra={"example": "500m"})
    memory: str = Field(json_schema_extra={"example": "256Mi"})

    model_config = ConfigDict(frozen=True)

    def as_manifest(self) -> dict:
        return {"cpu": self.cpu, "memory": self.memory}


class DeploymentSpec(BaseModel):
    """Desired state of the application deployment."""
    name: str = Field(min_length=1, description="Deployment name; service and ingress derive from it.")
    image_reference: str = Field(min_length=1, description="Image to run, e.g. ghcr.io/org/app:latest")
    replica_count: int = Field(default=1, ge=1)
    container_port: int = Field(default=DEFAULT_CONTAINER_PORT, ge=1, le=65535)
    service_port: int = Field(default=DEFAULT_SERVICE_PORT, ge=1, le=65535)
    resource_limits: ResourceQuantities = ResourceQuantities(cpu="500m", memory="256Mi")
    resource_requests: ResourceQuantities = ResourceQuantities(cpu="100m", memory="128Mi")

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "re2ect-app",
                "image_reference": "ghcr.io/org/re2ect-app:latest",
                "replica_count": 1,
                "container_port": 5000,
            }
        },
    )

    @field_validator("name")
    @classmethod
    def validate_dns_label(cls, v: str) -> str:
        """Kubernetes object names must be lowercase DNS labels."""
        allowed = set("abcdefghijklmnopqrstuvwxyz0123456789-")
        if not set(v) <= allowed or v.startswith("-") or v.endswith("-"):
            raise ValueError(f"Invalid deployment name: {v!r}. Must be a lowercase DNS label")
        return v

    @field_validator("image_reference")
    @classmethod
    def validate_image_reference(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("image_reference must not be blank")
        return v.strip()

    @property
    def service_name(self) -> str:
        return f"{self.name}-service"

    @property
    def ingress_name(self) -> str:
        return f"{self.name}-ingress"


class VerificationResult(BaseModel):
    """Successful verification of the public entry point."""
    url: str
    attempts: int
    status_code: int
    elapsed_seconds: float


class ProbeResult(BaseModel):
    """Outcome of one diagnostics sub-probe."""
    ok: bool = False
    output: str = ""
    error: Optional[str] = None
    skipped: bool = False

    @classmethod
    def succeeded(cls, output: str = "") -> "ProbeResult":
        return cls(ok=True, output=output)

    @classmethod
    def failed(cls, error: str, output: str = "") -> "ProbeResult":
        return cls(ok=False, output=output, error=error)

    @classmethod
    def skip(cls, reason: str) -> "ProbeResult":
        return cls(ok=False, error=reason, skipped=True)

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "ok" if self.ok else "failed"
