"""
Moderator action types, audit entries, rate limits and rogue detections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ModeratorActionType(Enum):
    FLAG_CONTENT = "flag_content"
    APPLY_VISIBILITY_RESTRICTION = "apply_visibility_restriction"
    APPLY_POSTING_FREEZE = "apply_posting_freeze"
    FULL_ENFORCEMENT = "full_enforcement"
    LIFT_RESTRICTION = "lift_restriction"
    ASSIGN_CASE = "assign_case"
    ESCALATE_CASE = "escalate_case"
    RESOLVE_CASE = "resolve_case"
    SUBMIT_APPEAL = "submit_appeal"
    REVIEW_APPEAL = "review_appeal"
    REQUEST_SUSPENSION = "request_suspension"
    APPROVE_SUSPENSION = "approve_suspension"
    EXECUTE_SUSPENSION = "execute_suspension"
    ASSIGN_ROLES = "assign_roles"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ModerationAuditEntry:
    """Append-only record of one moderator action. Only ``reversed_at`` and
    ``reversed_by`` are ever written after creation."""
    entry_id: str
    actor_id: str
    actor_level: int
    target_user_id: str
    action_type: ModeratorActionType
    reversible: bool
    restrictive: bool
    created_at: int
    reversed_at: Optional[int] = None
    reversed_by: Optional[str] = None

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None


@dataclass(slots=True, frozen=True)
class RateLimitRule:
    limit: int
    window_minutes: int

    @property
    def window_seconds(self) -> int:
        return self.window_minutes * 60


@dataclass(slots=True)
class RateLimitRecord:
    """Counter for one (moderator, action type) pair over ``[window_start, window_end)``."""
    moderator_id: str
    action_type: ModeratorActionType
    count: int
    window_start: int
    window_end: int


@dataclass(slots=True, frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_minutes: int = 0


class RoguePattern(Enum):
    HIGH_REVERSAL_RATE = "high_reversal_rate"
    EXCESSIVE_VOLUME = "excessive_volume"
    TARGETED_HARASSMENT = "targeted_harassment"
    TIME_CLUSTERING = "time_clustering"
    RESTRICTIVE_BIAS = "restrictive_bias"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class BehaviorAnalysis:
    """Statistics over a moderator's recent audit entries."""
    moderator_id: str
    total_actions: int
    reversed_actions: int
    restrictive_actions: int
    max_actions_on_one_target: int
    max_hour_bucket_share: float
    patterns: List[RoguePattern] = field(default_factory=list)

    @property
    def false_positive_rate(self) -> float:
        if self.total_actions == 0:
            return 0.0
        return self.reversed_actions / self.total_actions


@dataclass(slots=True)
class RogueModeratorDetection:
    detection_id: str
    moderator_id: str
    patterns: List[RoguePattern]
    false_positive_rate: float
    total_actions: int
    auto_suspended: bool
    detected_at: int
    case_id: Optional[str] = None
