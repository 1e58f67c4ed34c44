"""
Exception hierarchy for governance operations.

Authorization, not-found and invariant failures are raised synchronously
before anything is written. Best-effort side effects never raise; see
:mod:`gavel.governance.best_effort`.
"""

from __future__ import annotations

from typing import Optional


class GovernanceError(Exception):
    """Base class for every rejected governance operation."""


class AuthorizationError(GovernanceError):
    def __init__(self, actor_id: str, required_level: int, actual_level: int, action: str = "") -> None:
        self.actor_id = actor_id
        self.required_level = int(required_level)
        self.actual_level = int(actual_level)
        self.action = action
        label = f" for {action}" if action else ""
        super().__init__(
            f"{actor_id} has moderator level {self.actual_level}, "
            f"level {self.required_level} required{label}"
        )


class NotFoundError(GovernanceError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class InvariantViolation(GovernanceError):
    """The request conflicts with the current state of a record."""


class InvalidTransitionError(InvariantViolation):
    def __init__(self, case_id: str, current: object, target: object) -> None:
        self.case_id = case_id
        self.current = current
        self.target = target
        super().__init__(f"Case {case_id} cannot move from {current} to {target}")


class DuplicateApproverError(InvariantViolation):
    def __init__(self, approval_id: str, approver_id: str) -> None:
        self.approval_id = approval_id
        self.approver_id = approver_id
        super().__init__(f"{approver_id} has already approved {approval_id}")


class ApprovalExpiredError(InvariantViolation):
    def __init__(self, approval_id: str, expired_at: Optional[int] = None) -> None:
        self.approval_id = approval_id
        self.expired_at = expired_at
        super().__init__(f"Suspension approval {approval_id} has expired")


class RateLimitExceeded(GovernanceError):
    def __init__(self, actor_id: str, action: str, retry_after_minutes: int) -> None:
        self.actor_id = actor_id
        self.action = action
        self.retry_after_minutes = int(retry_after_minutes)
        super().__init__(
            f"{actor_id} is rate limited for {action}; retry in {self.retry_after_minutes} minute(s)"
        )
