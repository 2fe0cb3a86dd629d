"""
Typed step results and the fold that runs them.

A pipeline is an ordered list of (name, step) pairs. Each step returns a
StepResult:
- ok: continue
- degraded: a best-effort side effect failed; report it and continue
- fatal: stop; nothing after this step runs
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from config import ProvisioningConfig
from models.community import CommunityProfile
from models.schemas import RegistrationRequest
from .errors import ProvisioningError, UpstreamError

logger = logging.getLogger(__name__)

REASON_INTERNAL_ERROR = "internal_error"


class StepStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FATAL = "fatal"


@dataclass
class StepResult:
    status: StepStatus
    reason: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ProvisioningError] = None

    @classmethod
    def ok(cls, **detail) -> "StepResult":
        return cls(StepStatus.OK, detail=detail)

    @classmethod
    def degraded(cls, reason: str, **detail) -> "StepResult":
        return cls(StepStatus.DEGRADED, reason=reason, detail=detail)

    @classmethod
    def fatal(cls, error: ProvisioningError, **detail) -> "StepResult":
        merged = dict(error.detail)
        merged.update(detail)
        return cls(StepStatus.FATAL, reason=error.reason, detail=merged, error=error)


@dataclass
class RegistrationContext:
    """State carried from one registration step to the next"""
    request: RegistrationRequest
    profile: CommunityProfile
    config: ProvisioningConfig
    actor: str
    source_address: Optional[str] = None

    photo: Any = None  # directory.Photo, parsed during validation
    local_part: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    org_unit: Optional[str] = None
    org_unit_fallback: bool = False
    temp_password: Optional[str] = None
    provider_id: Optional[str] = None
    added_to_group: bool = False
    group_error: Optional[str] = None
    avatar: Optional[str] = None
    avatar_synced: Optional[bool] = None
    account_id: Optional[int] = None

    def audit_detail(self) -> Dict[str, Any]:
        """Identifying fields known so far, for audit entries"""
        detail: Dict[str, Any] = {"type": self.request.type.value}
        if self.local_part:
            detail["local_part"] = self.local_part
        if self.email:
            detail["email"] = self.email
        return detail


Step = Callable[[RegistrationContext], Awaitable[StepResult]]
DegradedHandler = Callable[[str, StepResult, RegistrationContext], Awaitable[None]]


@dataclass
class RunOutcome:
    completed: bool
    failed_step: Optional[str] = None
    failure: Optional[StepResult] = None
    degraded: List[Tuple[str, StepResult]] = field(default_factory=list)


async def run_steps(
    steps: Sequence[Tuple[str, Step]],
    context: RegistrationContext,
    on_degraded: Optional[DegradedHandler] = None,
) -> RunOutcome:
    """
    Run ``steps`` in order, stopping only at the first fatal result.

    A step that raises instead of returning is treated as fatal:
    ProvisioningError keeps its reason, anything else becomes
    ``internal_error``.
    """
    outcome = RunOutcome(completed=False)

    for name, step in steps:
        try:
            result = await step(context)
        except ProvisioningError as e:
            result = StepResult.fatal(e)
        except Exception as e:
            logger.exception(f"Step {name} raised {type(e).__name__}")
            result = StepResult.fatal(
                UpstreamError("Registration failed unexpectedly", reason=REASON_INTERNAL_ERROR),
                exception=type(e).__name__,
            )

        if result.status == StepStatus.FATAL:
            logger.info(f"Step {name} failed: {result.reason}")
            outcome.failed_step = name
            outcome.failure = result
            return outcome

        if result.status == StepStatus.DEGRADED:
            logger.warning(f"Step {name} degraded: {result.reason}")
            outcome.degraded.append((name, result))
            if on_degraded is not None:
                await on_degraded(name, result, context)

    outcome.completed = True
    return outcome
