"""
Moderation case data structures.

A case tracks one subject's open concerns from creation through human review
to resolution, and keeps an append-only history of everything that happened
to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class CaseStatus(Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    PENDING_ACTION = "pending_action"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    APPEALED = "appealed"

    def __str__(self) -> str:
        return self.value


# Statuses that count as "open" for per-subject deduplication
ACTIVE_CASE_STATUSES = frozenset({CaseStatus.OPEN, CaseStatus.UNDER_REVIEW})


class CasePriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    def __str__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    CasePriority.LOW: 0,
    CasePriority.MEDIUM: 1,
    CasePriority.HIGH: 2,
    CasePriority.CRITICAL: 3,
}


class ReasonCode(Enum):
    IDENTITY_FRAUD = "identity_fraud"
    MINOR_SAFETY = "minor_safety"
    CRIMINAL_ACTIVITY = "criminal_activity"
    KYC_MISMATCH = "kyc_mismatch"
    HIGH_RISK_CONTENT = "high_risk_content"
    COORDINATED_ABUSE = "coordinated_abuse"
    PERSISTENT_VIOLATIONS = "persistent_violations"
    MONETIZATION_BYPASS = "monetization_bypass"
    GOVERNANCE_BYPASS = "governance_bypass"
    SPAM = "spam"
    HARASSMENT = "harassment"
    HATE_SPEECH = "hate_speech"
    SCAM = "scam"
    IMPERSONATION = "impersonation"
    OTHER = "other"

    def __str__(self) -> str:
        return self.value


class ResolutionOutcome(Enum):
    """How a reviewer closed a case. Anything but NO_VIOLATION counts as a
    confirmed violation for the violation-history signal."""

    NO_VIOLATION = "no_violation"
    WARNING = "warning"
    RESTRICTION = "restriction"
    SUSPENSION = "suspension"

    def __str__(self) -> str:
        return self.value


class ActorType(Enum):
    SYSTEM = "system"
    MODERATOR = "moderator"
    USER = "user"

    def __str__(self) -> str:
        return self.value


SYSTEM_ACTOR = "AUTO"


@dataclass(slots=True, frozen=True)
class CaseHistoryEntry:
    """Immutable history record. History is only ever appended to."""
    actor_id: str
    actor_type: ActorType
    action: str
    details: Dict[str, Any]
    timestamp: int


@dataclass(slots=True, frozen=True)
class CaseResolution:
    outcome: ResolutionOutcome
    review_note: str = ""


@dataclass(slots=True)
class ModerationCase:
    """A moderation case.

    Attributes:
        case_id: Unique identifier
        subject_user_id: User the case is about
        status: Current lifecycle state
        priority: Review priority
        opened_at: Unix seconds the case was created
        opened_by: ``"AUTO"`` or the opening moderator's id
        reason_codes: Union of every reason that triggered or merged into the case
        assignee_id: Reviewer currently holding the case
        resolution: Set once an admin resolves the case
        resolved_by: Admin who last resolved the case
        resolved_at: Unix seconds of the last resolution
        history: Append-only audit trail, oldest first
    """
    case_id: str
    subject_user_id: str
    status: CaseStatus
    priority: CasePriority
    opened_at: int
    opened_by: str
    reason_codes: FrozenSet[ReasonCode] = frozenset()
    assignee_id: Optional[str] = None
    resolution: Optional[CaseResolution] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[int] = None
    updated_at: int = 0
    history: List[CaseHistoryEntry] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CASE_STATUSES


@dataclass(slots=True, frozen=True)
class HumanReviewQueueItem:
    """A case waiting for a human reviewer. Removed once claimed or resolved."""
    case_id: str
    subject_user_id: str
    priority: CasePriority
    reason: str
    enforcement_confidence: float
    queued_at: int
