"""
Enforcement tiers, restriction snapshots and the account-status view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class EnforcementTier(Enum):
    NONE = "none"
    SOFT = "soft"
    HARD = "hard"
    SUSPENSION_RISK = "suspension_risk"

    def __str__(self) -> str:
        return self.value


class VisibilityTier(Enum):
    NORMAL = "normal"
    LOW = "low"
    HIDDEN = "hidden"

    def __str__(self) -> str:
        return self.value

    @property
    def severity(self) -> int:
        return _VISIBILITY_SEVERITY[self]


_VISIBILITY_SEVERITY = {
    VisibilityTier.NORMAL: 0,
    VisibilityTier.LOW: 1,
    VisibilityTier.HIDDEN: 2,
}


class AccountStatus(Enum):
    """Status values understood by the external account-status engine."""

    ACTIVE = "active"
    SOFT_RESTRICTED = "soft_restricted"
    HARD_RESTRICTED = "hard_restricted"
    SUSPENDED = "suspended"

    def __str__(self) -> str:
        return self.value


class NotificationLevel(Enum):
    """The only enforcement levels ever sent to users."""

    SOFT = "soft"
    HARD = "hard"
    SUSPENDED = "suspended"

    def __str__(self) -> str:
        return self.value


# Feature lock name pushed to the account-status engine for a posting freeze
POSTING_FEATURE_LOCK = "posting"


@dataclass(slots=True)
class VisibilityRestriction:
    """Current visibility restriction for a user. ``expires_at`` None means it
    stays until a human clears it."""
    user_id: str
    tier: VisibilityTier
    applied_by: str
    applied_at: int
    expires_at: Optional[int] = None
    reason: str = ""


@dataclass(slots=True)
class PostingRestriction:
    user_id: str
    restricted: bool
    applied_by: str
    applied_at: int
    expires_at: Optional[int] = None
    reason: str = ""


@dataclass(slots=True)
class AccountStatusSnapshot:
    user_id: str
    status: AccountStatus = AccountStatus.ACTIVE
    feature_locks: List[str] = field(default_factory=list)
    visibility_tier: VisibilityTier = VisibilityTier.NORMAL


@dataclass(slots=True)
class EnforcementOutcome:
    """Result of a federated enforcement pass for one user."""
    user_id: str
    tier: EnforcementTier
    score: float
    case_id: Optional[str] = None


@dataclass(slots=True)
class SyncDecision:
    """What a synchronization pass did (``actions``) and whether an automatic
    restriction is now a candidate for lifting. Lifting is never executed here."""
    user_id: str
    account_status: AccountStatus
    actions: List[str] = field(default_factory=list)
    lift_candidate: bool = False
