"""
Governance engine facade.

Wires the governance components to one database and one set of
collaborators, and exposes the operations callers use. Moderator-initiated
actions go through the same guard: rate limit first, then permission, then the
action itself, then the rate-limit hit and an audit entry.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Iterable, List, Mapping, Optional, TypeVar

from gavel.collaborators.interfaces import (
    AccountStatusEngine,
    AnomalyFeed,
    ContentReportStore,
    NotificationDispatcher,
    TrustProfileReader,
)
from gavel.database.database import Database
from gavel.datatypes.appeal_datatypes import (
    AppealDecision,
    ApprovalResult,
    EnforcementAppeal,
    SuspensionApproval,
)
from gavel.datatypes.audit_datatypes import (
    BehaviorAnalysis,
    ModerationAuditEntry,
    ModeratorActionType,
    RateLimitResult,
    RateLimitRule,
    RogueModeratorDetection,
)
from gavel.datatypes.case_datatypes import (
    CasePriority,
    CaseResolution,
    CaseStatus,
    HumanReviewQueueItem,
    ModerationCase,
    ReasonCode,
    SYSTEM_ACTOR,
)
from gavel.datatypes.confidence_datatypes import EnforcementConfidence
from gavel.datatypes.enforcement_datatypes import (
    EnforcementOutcome,
    PostingRestriction,
    SyncDecision,
    VisibilityRestriction,
    VisibilityTier,
)
from gavel.datatypes.role_datatypes import ModeratorLevel, Role, UserRoles
from gavel.governance.appeals import AppealManager
from gavel.governance.audit_log import AuditLog
from gavel.governance.best_effort import run_best_effort
from gavel.governance.case_manager import CaseManager
from gavel.governance.confidence_engine import ConfidenceEngine
from gavel.governance.enforcement_dispatcher import EnforcementDispatcher
from gavel.governance.errors import RateLimitExceeded
from gavel.governance.permissions import PermissionService
from gavel.governance.rate_limiter import RateLimiter
from gavel.governance.rogue_detector import RogueModeratorDetector
from gavel.governance.suspension_approvals import SuspensionApprovalManager
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, hours, now_ts

logger = get_logger("governance_engine")

T = TypeVar("T")


class GovernanceEngine:
    """
    Entry point for every governance operation.

    Args:
        db: Initialized governance database
        trust_profiles: AI/community flag counts per user
        reports: Content-report store
        anomalies: Anomaly-detection feed
        account_status: External account-status engine
        notifier: Enforcement notice delivery
        rate_limits: Per-action rules; defaults apply where omitted
        clock: Current unix seconds, shared by every component
        notifications_enabled: When False, no notices are sent
    """

    def __init__(
        self,
        db: Database,
        trust_profiles: TrustProfileReader,
        reports: ContentReportStore,
        anomalies: AnomalyFeed,
        account_status: AccountStatusEngine,
        notifier: NotificationDispatcher,
        rate_limits: Optional[Mapping[ModeratorActionType, RateLimitRule]] = None,
        clock: Clock = now_ts,
        notifications_enabled: bool = True,
    ) -> None:
        self.db = db
        self.clock = clock

        self.permissions = PermissionService(db, clock)
        self.confidence = ConfidenceEngine(db, trust_profiles, reports, anomalies, clock)
        self.cases = CaseManager(db, self.confidence, self.permissions, clock)
        self.dispatcher = EnforcementDispatcher(
            db,
            self.confidence,
            self.cases,
            account_status,
            notifier,
            clock,
            notifications_enabled=notifications_enabled,
        )
        self.appeals = AppealManager(db, self.permissions, self.dispatcher, clock)
        self.suspensions = SuspensionApprovalManager(db, self.permissions, self.dispatcher, clock)
        self.rate_limiter = RateLimiter(db, rate_limits, clock)
        self.audit_log = AuditLog(db, clock)
        self.rogue_detector = RogueModeratorDetector(db, self.audit_log, self.cases, clock)

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        actor_id: str,
        action_type: ModeratorActionType,
        target_user_id: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Rate limit, authorize, run ``operation``, then count it and audit it."""
        limit = await self.rate_limiter.check(actor_id, action_type)
        if not limit.allowed:
            raise RateLimitExceeded(actor_id, action_type.value, limit.reset_in_minutes)

        level = await self.permissions.require_action(actor_id, action_type)
        result = await operation()

        await run_best_effort(
            f"rate limit record for {actor_id}/{action_type}",
            self.rate_limiter.record(actor_id, action_type),
        )
        await self.audit_log.record(actor_id, level, target_user_id, action_type)
        return result

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def assign_roles(self, target_user_id: str, roles: Iterable[Role], granted_by: str) -> UserRoles:
        role_list = list(roles)
        return await self._guarded(
            granted_by,
            ModeratorActionType.ASSIGN_ROLES,
            target_user_id,
            lambda: self.permissions.assign_roles(target_user_id, role_list, granted_by),
        )

    async def get_user_roles(self, user_id: str) -> UserRoles:
        return await self.permissions.get_user_roles(user_id)

    async def get_moderator_level(self, user_id: str) -> ModeratorLevel:
        return await self.permissions.get_moderator_level(user_id)

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    async def calculate_confidence(self, user_id: str) -> EnforcementConfidence:
        return await self.confidence.calculate(user_id)

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    async def create_case(
        self,
        subject_user_id: str,
        reason_codes: Iterable[ReasonCode],
        opened_by: str = SYSTEM_ACTOR,
    ) -> str:
        """Open or merge a case. Cases opened by a moderator count as a flag action."""
        reasons = list(reason_codes)
        if opened_by == SYSTEM_ACTOR:
            return await self.cases.create_case(subject_user_id, reasons, opened_by)
        return await self._guarded(
            opened_by,
            ModeratorActionType.FLAG_CONTENT,
            subject_user_id,
            lambda: self.cases.create_case(subject_user_id, reasons, opened_by),
        )

    async def flag_user(self, subject_user_id: str, reason_codes: Iterable[ReasonCode], moderator_id: str) -> str:
        return await self.create_case(subject_user_id, reason_codes, moderator_id)

    async def assign_case(self, case_id: str, assignee_id: str, assigned_by: str) -> ModerationCase:
        case = await self.cases.get_case(case_id)
        return await self._guarded(
            assigned_by,
            ModeratorActionType.ASSIGN_CASE,
            case.subject_user_id,
            lambda: self.cases.assign_case(case_id, assignee_id, assigned_by),
        )

    async def resolve_case(self, case_id: str, reviewer_id: str, resolution: CaseResolution) -> ModerationCase:
        case = await self.cases.get_case(case_id)
        return await self._guarded(
            reviewer_id,
            ModeratorActionType.RESOLVE_CASE,
            case.subject_user_id,
            lambda: self.cases.resolve_case(case_id, reviewer_id, resolution),
        )

    async def escalate_case(self, case_id: str, actor_id: str, note: str = "") -> ModerationCase:
        case = await self.cases.get_case(case_id)
        return await self._guarded(
            actor_id,
            ModeratorActionType.ESCALATE_CASE,
            case.subject_user_id,
            lambda: self.cases.escalate_case(case_id, actor_id, note),
        )

    async def mark_pending_action(self, case_id: str, actor_id: str, note: str = "") -> ModerationCase:
        return await self.cases.mark_pending_action(case_id, actor_id, note)

    async def add_case_note(self, case_id: str, actor_id: str, note: str) -> None:
        await self.cases.add_case_note(case_id, actor_id, note)

    async def get_case(self, case_id: str) -> ModerationCase:
        return await self.cases.get_case(case_id)

    async def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        priority: Optional[CasePriority] = None,
        subject_user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ModerationCase]:
        return await self.cases.list_cases(status, priority, subject_user_id, limit)

    async def list_review_queue(self, limit: int = 50) -> List[HumanReviewQueueItem]:
        return await self.cases.list_review_queue(limit)

    async def claim_next_review_item(self, moderator_id: str) -> Optional[ModerationCase]:
        return await self.cases.claim_next_review_item(moderator_id)

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    async def apply_federated_enforcement(self, user_id: str, actor_id: Optional[str] = None) -> EnforcementOutcome:
        """Run a federated enforcement pass. When a moderator triggers it, it is guarded."""
        if actor_id is None or actor_id == SYSTEM_ACTOR:
            return await self.dispatcher.apply_federated_enforcement(user_id)
        return await self._guarded(
            actor_id,
            ModeratorActionType.FULL_ENFORCEMENT,
            user_id,
            lambda: self.dispatcher.apply_federated_enforcement(user_id),
        )

    async def apply_visibility_restriction(
        self,
        user_id: str,
        actor_id: str,
        tier: VisibilityTier,
        duration_hours: Optional[float] = None,
        reason: str = "",
    ) -> VisibilityRestriction:
        duration = hours(duration_hours) if duration_hours is not None else None
        return await self._guarded(
            actor_id,
            ModeratorActionType.APPLY_VISIBILITY_RESTRICTION,
            user_id,
            lambda: self.dispatcher.apply_visibility_restriction(user_id, tier, actor_id, duration, reason),
        )

    async def freeze_posting(
        self,
        user_id: str,
        actor_id: str,
        duration_hours: Optional[float] = None,
        reason: str = "",
    ) -> PostingRestriction:
        duration = hours(duration_hours) if duration_hours is not None else None
        return await self._guarded(
            actor_id,
            ModeratorActionType.APPLY_POSTING_FREEZE,
            user_id,
            lambda: self.dispatcher.freeze_posting(user_id, actor_id, duration, reason),
        )

    async def lift_restrictions(self, user_id: str, actor_id: str, reason: str = "") -> bool:
        return await self._guarded(
            actor_id,
            ModeratorActionType.LIFT_RESTRICTION,
            user_id,
            lambda: self.dispatcher.clear_restrictions(user_id, actor_id, reason),
        )

    async def get_visibility_restriction(self, user_id: str) -> Optional[VisibilityRestriction]:
        return await self.dispatcher.get_visibility_restriction(user_id)

    async def get_posting_restriction(self, user_id: str) -> Optional[PostingRestriction]:
        return await self.dispatcher.get_posting_restriction(user_id)

    async def is_posting_allowed(self, user_id: str) -> bool:
        return await self.dispatcher.is_posting_allowed(user_id)

    async def synchronize_enforcement_state(self, user_id: str) -> SyncDecision:
        return await self.dispatcher.synchronize_enforcement_state(user_id)

    # ------------------------------------------------------------------
    # Appeals
    # ------------------------------------------------------------------

    async def submit_appeal(self, case_id: str, user_id: str, explanation: str) -> str:
        limit = await self.rate_limiter.check(user_id, ModeratorActionType.SUBMIT_APPEAL)
        if not limit.allowed:
            raise RateLimitExceeded(user_id, ModeratorActionType.SUBMIT_APPEAL.value, limit.reset_in_minutes)

        appeal_id = await self.appeals.submit_appeal(case_id, user_id, explanation)
        await run_best_effort(
            f"rate limit record for {user_id}/submit_appeal",
            self.rate_limiter.record(user_id, ModeratorActionType.SUBMIT_APPEAL),
        )
        return appeal_id

    async def get_appeal(self, appeal_id: str) -> EnforcementAppeal:
        return await self.appeals.get_appeal(appeal_id)

    async def list_appeals(self, case_id: str) -> List[EnforcementAppeal]:
        return await self.appeals.list_appeals(case_id)

    async def start_appeal_review(self, appeal_id: str, reviewer_id: str) -> EnforcementAppeal:
        return await self.appeals.start_appeal_review(appeal_id, reviewer_id)

    async def review_appeal(
        self,
        appeal_id: str,
        reviewer_id: str,
        decision: AppealDecision,
        explanation: str,
    ) -> EnforcementAppeal:
        appeal = await self.appeals.get_appeal(appeal_id)
        return await self._guarded(
            reviewer_id,
            ModeratorActionType.REVIEW_APPEAL,
            appeal.user_id,
            lambda: self.appeals.review_appeal(appeal_id, reviewer_id, decision, explanation),
        )

    # ------------------------------------------------------------------
    # Suspension quorum
    # ------------------------------------------------------------------

    async def request_suspension_approval(
        self,
        target_user_id: str,
        requester_id: str,
        reason: str,
        case_id: Optional[str] = None,
    ) -> str:
        return await self._guarded(
            requester_id,
            ModeratorActionType.REQUEST_SUSPENSION,
            target_user_id,
            lambda: self.suspensions.request_approval(target_user_id, requester_id, reason, case_id),
        )

    async def approve_suspension(self, approval_id: str, approver_id: str) -> ApprovalResult:
        approval = await self.suspensions.get_approval(approval_id)
        return await self._guarded(
            approver_id,
            ModeratorActionType.APPROVE_SUSPENSION,
            approval.target_user_id,
            lambda: self.suspensions.approve(approval_id, approver_id),
        )

    async def execute_suspension(self, approval_id: str, executor_id: str) -> SuspensionApproval:
        approval = await self.suspensions.get_approval(approval_id)
        return await self._guarded(
            executor_id,
            ModeratorActionType.EXECUTE_SUSPENSION,
            approval.target_user_id,
            lambda: self.suspensions.execute_suspension(approval_id, executor_id),
        )

    async def get_suspension_approval(self, approval_id: str) -> SuspensionApproval:
        return await self.suspensions.get_approval(approval_id)

    # ------------------------------------------------------------------
    # Moderator safeguards
    # ------------------------------------------------------------------

    async def check_rate_limit(self, moderator_id: str, action_type: ModeratorActionType) -> RateLimitResult:
        return await self.rate_limiter.check(moderator_id, action_type)

    async def record_rate_limit(self, moderator_id: str, action_type: ModeratorActionType) -> None:
        await self.rate_limiter.record(moderator_id, action_type)

    async def analyze_moderator_behavior(self, moderator_id: str) -> Optional[RogueModeratorDetection]:
        return await self.rogue_detector.analyze_moderator_behavior(moderator_id)

    async def get_behavior_analysis(self, moderator_id: str) -> BehaviorAnalysis:
        return await self.rogue_detector.analyze_behavior(moderator_id)

    async def reverse_action(self, entry_id: str, reversed_by: str) -> ModerationAuditEntry:
        """Mark an audited action as reversed. Admins only."""
        await self.permissions.require_level(reversed_by, ModeratorLevel.ADMIN, "reverse_action")
        return await self.audit_log.reverse(entry_id, reversed_by)
