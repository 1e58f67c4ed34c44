"""
Appeal and permanent-suspension quorum data structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class AppealStatus(Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


class AppealDecision(Enum):
    UPHELD = "upheld"
    OVERTURNED = "overturned"
    MODIFIED = "modified"

    def __str__(self) -> str:
        return self.value

    @property
    def appeal_status(self) -> AppealStatus:
        """Upheld rejects the appeal; Overturned and Modified approve it."""
        return AppealStatus.REJECTED if self is AppealDecision.UPHELD else AppealStatus.APPROVED


@dataclass(slots=True, frozen=True)
class AppealOutcome:
    decision: AppealDecision
    explanation: str


@dataclass(slots=True)
class EnforcementAppeal:
    appeal_id: str
    case_id: str
    user_id: str
    status: AppealStatus
    explanation: str
    submitted_at: int
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[int] = None
    outcome: Optional[AppealOutcome] = None


class ApprovalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"
    EXECUTED = "executed"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class SuspensionApproval:
    """Quorum record gating a permanent suspension.

    ``approvers`` always includes the requester. The quorum is reached once
    ``len(approvers) >= approvals_needed + 1``.
    """
    approval_id: str
    target_user_id: str
    requester_id: str
    reason: str
    case_id: Optional[str]
    approvals_needed: int
    status: ApprovalStatus
    created_at: int
    expires_at: int
    approvers: List[str] = field(default_factory=list)
    approved_at: Optional[int] = None
    executed_at: Optional[int] = None
    executed_by: Optional[str] = None

    @property
    def quorum_reached(self) -> bool:
        return len(self.approvers) >= self.approvals_needed + 1


@dataclass(slots=True, frozen=True)
class ApprovalResult:
    """Result of one approval. ``approved`` means this approver was recorded;
    ``actioned`` means the quorum is complete and the suspension may run."""
    approved: bool
    actioned: bool
    approvals: int
