"""
Pipeline run state tracking.

One PipelineState is created per run and threaded through every stage. It is
never persisted: each run provisions fresh credentials and re-resolves the
instance address.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from deploy_pipeline.errors import PipelineStateError
from deploy_pipeline.infrastructure.remote import SSHCredential

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stages in execution order."""
    PROVISION = "provision"
    WAIT_FOR_SSH = "wait_for_ssh"
    WAIT_FOR_CLUSTER_API = "wait_for_cluster_api"
    PUBLISH = "publish"
    ROLLOUT = "rollout"
    VERIFY = "verify"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class StageOutcome:
    """Terminal result of a single stage."""
    status: OutcomeStatus
    reason: Optional[str] = None
    diagnostics_ref: Optional[str] = None

    @classmethod
    def success(cls) -> "StageOutcome":
        return cls(OutcomeStatus.SUCCESS)

    @classmethod
    def failure(cls, reason: str, diagnostics_ref: Optional[str] = None) -> "StageOutcome":
        return cls(OutcomeStatus.FAILURE, reason=reason, diagnostics_ref=diagnostics_ref)

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


@dataclass
class StageRecord:
    stage: Stage
    outcome: StageOutcome
    timestamp: datetime
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "outcome": self.outcome.status.value,
            "reason": self.outcome.reason,
            "diagnostics_ref": self.outcome.diagnostics_ref,
            "timestamp": self.timestamp.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
        }


class PipelineState:
    """Mutable record shared by all stages of one run."""

    def __init__(self):
        self._instance_address: Optional[str] = None
        self.credential: Optional[SSHCredential] = None
        self.address_confirmed = False
        self.image_reference: Optional[str] = None
        self.stage_history: List[StageRecord] = []

    @property
    def instance_address(self) -> Optional[str]:
        return self._instance_address

    @instance_address.setter
    def instance_address(self, value: str) -> None:
        if self._instance_address is not None:
            raise PipelineStateError("instance_address is already set for this run")
        if not value:
            raise PipelineStateError("instance_address must not be empty")
        self._instance_address = value

    def record(self, stage: Stage, outcome: StageOutcome, duration_seconds: float = 0.0) -> StageRecord:
        entry = StageRecord(
            stage=stage,
            outcome=outcome,
            timestamp=datetime.now(timezone.utc),
            duration_seconds=duration_seconds,
        )
        self.stage_history.append(entry)
        return entry

    def require_confirmed_address(self) -> str:
        """Address for remote operations; must have been poller-confirmed."""
        if not self._instance_address or not self.address_confirmed:
            raise PipelineStateError("Instance address has not been confirmed reachable")
        return self._instance_address

    def require_image_reference(self) -> str:
        if not self.image_reference:
            raise PipelineStateError("No image reference: publish must succeed before rollout")
        return self.image_reference

    def require_credential(self) -> SSHCredential:
        if self.credential is None:
            raise PipelineStateError("No SSH credential: provisioning has not completed")
        return self.credential


@dataclass
class PipelineResult:
    """All-or-nothing result of a pipeline run."""
    success: bool
    stage_history: List[StageRecord] = field(default_factory=list)
    failed_stage: Optional[Stage] = None
    reason: Optional[str] = None
    error_type: Optional[str] = None
    diagnostics: Optional[Any] = None
    instance_address: Optional[str] = None
    image_reference: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "success" if self.success else "failed",
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "reason": self.reason,
            "error_type": self.error_type,
            "instance_address": self.instance_address,
            "image_reference": self.image_reference,
            "stages": [record.to_dict() for record in self.stage_history],
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics is not None else None,
        }
