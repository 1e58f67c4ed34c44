"""
Tiered enforcement.

A confidence score picks one of four tiers; each tier has a fixed plan of
restrictions, a case to open or merge into, and a notice level. Restrictions
are per-user current-state rows that expire lazily: a read that finds an
expired row deletes it and reports no restriction.

After enforcement the account-status engine is brought in line with what was
applied. That push, and every user notice, is best-effort.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

from gavel.collaborators.interfaces import AccountStatusEngine, NotificationDispatcher
from gavel.database.database import Database
from gavel.datatypes.case_datatypes import CasePriority, ReasonCode, SYSTEM_ACTOR
from gavel.datatypes.enforcement_datatypes import (
    AccountStatus,
    AccountStatusSnapshot,
    EnforcementOutcome,
    EnforcementTier,
    NotificationLevel,
    POSTING_FEATURE_LOCK,
    PostingRestriction,
    SyncDecision,
    VisibilityRestriction,
    VisibilityTier,
)
from gavel.governance.best_effort import run_best_effort
from gavel.governance.case_manager import CaseManager
from gavel.governance.confidence_engine import ConfidenceEngine
from gavel.repositories.restriction_repo import RestrictionRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, HOUR, hours, now_ts

logger = get_logger("enforcement_dispatcher")


SOFT_THRESHOLD = 0.3
HARD_THRESHOLD = 0.6
SUSPENSION_RISK_THRESHOLD = 0.8

# Automatic restrictions older than this are reported as lift candidates
LIFT_CANDIDATE_AGE = 24 * HOUR


@dataclass(slots=True, frozen=True)
class TierPlan:
    """What one enforcement tier applies. ``None`` durations never expire."""
    visibility: VisibilityTier
    visibility_seconds: Optional[int]
    freeze_posting: bool
    posting_seconds: Optional[int]
    reasons: FrozenSet[ReasonCode]
    priority: Optional[CasePriority]
    require_review: bool
    notice: NotificationLevel
    account_status: AccountStatus


TIER_PLANS = {
    EnforcementTier.SOFT: TierPlan(
        visibility=VisibilityTier.LOW,
        visibility_seconds=hours(48),
        freeze_posting=False,
        posting_seconds=None,
        reasons=frozenset({ReasonCode.HIGH_RISK_CONTENT}),
        priority=None,
        require_review=False,
        notice=NotificationLevel.SOFT,
        account_status=AccountStatus.SOFT_RESTRICTED,
    ),
    EnforcementTier.HARD: TierPlan(
        visibility=VisibilityTier.HIDDEN,
        visibility_seconds=hours(72),
        freeze_posting=True,
        posting_seconds=hours(48),
        reasons=frozenset({ReasonCode.PERSISTENT_VIOLATIONS}),
        priority=None,
        require_review=True,
        notice=NotificationLevel.HARD,
        account_status=AccountStatus.HARD_RESTRICTED,
    ),
    EnforcementTier.SUSPENSION_RISK: TierPlan(
        visibility=VisibilityTier.HIDDEN,
        visibility_seconds=None,
        freeze_posting=True,
        posting_seconds=None,
        reasons=frozenset({ReasonCode.PERSISTENT_VIOLATIONS, ReasonCode.HIGH_RISK_CONTENT}),
        priority=CasePriority.CRITICAL,
        require_review=True,
        notice=NotificationLevel.SUSPENDED,
        account_status=AccountStatus.HARD_RESTRICTED,
    ),
}


def tier_for_score(score: float) -> EnforcementTier:
    """Each tier's lower bound is inclusive."""
    if score >= SUSPENSION_RISK_THRESHOLD:
        return EnforcementTier.SUSPENSION_RISK
    if score >= HARD_THRESHOLD:
        return EnforcementTier.HARD
    if score >= SOFT_THRESHOLD:
        return EnforcementTier.SOFT
    return EnforcementTier.NONE


def account_visibility(tier: VisibilityTier) -> VisibilityTier:
    """The account-status engine only distinguishes normal and lowered visibility."""
    return VisibilityTier.NORMAL if tier is VisibilityTier.NORMAL else VisibilityTier.LOW


def _expiry(now: int, seconds: Optional[int]) -> Optional[int]:
    return None if seconds is None else now + seconds


def _is_expired(expires_at: Optional[int], now: int) -> bool:
    return expires_at is not None and expires_at <= now


class EnforcementDispatcher:
    """
    Applies tiered restrictions and keeps the account-status engine in sync.

    Args:
        db: Governance database
        confidence_engine: Scores the user before a federated enforcement pass
        case_manager: Opens or merges the case for each applied tier
        account_status: External account-status engine
        notifier: Delivers fixed-copy notices to users
        clock: Current unix seconds
        notifications_enabled: When False, notices are skipped entirely
    """

    def __init__(
        self,
        db: Database,
        confidence_engine: ConfidenceEngine,
        case_manager: CaseManager,
        account_status: AccountStatusEngine,
        notifier: NotificationDispatcher,
        clock: Clock = now_ts,
        notifications_enabled: bool = True,
    ) -> None:
        self.db = db
        self.confidence_engine = confidence_engine
        self.case_manager = case_manager
        self.account_status = account_status
        self.notifier = notifier
        self.clock = clock
        self.notifications_enabled = notifications_enabled

    # ------------------------------------------------------------------
    # Federated enforcement
    # ------------------------------------------------------------------

    async def apply_federated_enforcement(self, user_id: str) -> EnforcementOutcome:
        """Score the user and apply the matching tier. Internal errors propagate."""
        confidence = await self.confidence_engine.calculate(user_id)
        tier = tier_for_score(confidence.score)
        outcome = EnforcementOutcome(user_id=user_id, tier=tier, score=confidence.score)

        if tier is EnforcementTier.NONE:
            logger.debug("[ENFORCEMENT] %s below enforcement threshold (%.3f)", user_id, confidence.score)
            return outcome

        plan = TIER_PLANS[tier]
        now = self.clock()
        reason = f"enforcement_tier:{tier.value}"

        async with self.db.transaction() as conn:
            await RestrictionRepository.upsert_visibility(
                conn,
                VisibilityRestriction(
                    user_id=user_id,
                    tier=plan.visibility,
                    applied_by=SYSTEM_ACTOR,
                    applied_at=now,
                    expires_at=_expiry(now, plan.visibility_seconds),
                    reason=reason,
                ),
            )
            if plan.freeze_posting:
                await RestrictionRepository.upsert_posting(
                    conn,
                    PostingRestriction(
                        user_id=user_id,
                        restricted=True,
                        applied_by=SYSTEM_ACTOR,
                        applied_at=now,
                        expires_at=_expiry(now, plan.posting_seconds),
                        reason=reason,
                    ),
                )

        outcome.case_id = await self.case_manager.create_case(
            user_id,
            plan.reasons,
            SYSTEM_ACTOR,
            priority=plan.priority,
            require_review=plan.require_review,
        )

        logger.info(
            "[ENFORCEMENT] Applied %s tier to %s (score=%.3f, case=%s)",
            tier,
            user_id,
            confidence.score,
            outcome.case_id,
        )

        await self.notify(user_id, plan.notice)
        # An earlier tier's freeze may still be live, so derive the status from the rows.
        await run_best_effort(f"account status sync for {user_id}", self.reconcile_account_status(user_id, reason))
        return outcome

    # ------------------------------------------------------------------
    # Manual restrictions
    # ------------------------------------------------------------------

    async def apply_visibility_restriction(
        self,
        user_id: str,
        tier: VisibilityTier,
        applied_by: str,
        duration_seconds: Optional[int] = None,
        reason: str = "",
    ) -> VisibilityRestriction:
        now = self.clock()
        restriction = VisibilityRestriction(
            user_id=user_id,
            tier=tier,
            applied_by=applied_by,
            applied_at=now,
            expires_at=_expiry(now, duration_seconds),
            reason=reason,
        )
        async with self.db.transaction() as conn:
            if tier is VisibilityTier.NORMAL:
                await RestrictionRepository.delete_visibility(conn, user_id)
            else:
                await RestrictionRepository.upsert_visibility(conn, restriction)

        logger.info("[ENFORCEMENT] %s set visibility of %s to %s", applied_by, user_id, tier)
        await run_best_effort(f"account status sync for {user_id}", self.reconcile_account_status(user_id, reason))
        return restriction

    async def freeze_posting(
        self,
        user_id: str,
        applied_by: str,
        duration_seconds: Optional[int] = None,
        reason: str = "",
    ) -> PostingRestriction:
        now = self.clock()
        restriction = PostingRestriction(
            user_id=user_id,
            restricted=True,
            applied_by=applied_by,
            applied_at=now,
            expires_at=_expiry(now, duration_seconds),
            reason=reason,
        )
        async with self.db.transaction() as conn:
            await RestrictionRepository.upsert_posting(conn, restriction)

        logger.info("[ENFORCEMENT] %s froze posting for %s", applied_by, user_id)
        await run_best_effort(f"account status sync for {user_id}", self.reconcile_account_status(user_id, reason))
        return restriction

    async def clear_restrictions(self, user_id: str, cleared_by: str, reason: str = "") -> bool:
        """Remove both restrictions, including non-expiring ones.

        Returns:
            True if anything was removed.
        """
        visibility = await self.get_visibility_restriction(user_id)
        posting = await self.get_posting_restriction(user_id)

        async with self.db.transaction() as conn:
            await RestrictionRepository.delete_visibility(conn, user_id)
            await RestrictionRepository.delete_posting(conn, user_id)

        removed = visibility is not None or posting is not None
        if removed:
            logger.info("[ENFORCEMENT] %s lifted restrictions on %s", cleared_by, user_id)
        await run_best_effort(
            f"account status sync for {user_id}",
            self.reconcile_account_status(user_id, reason or f"lifted_by:{cleared_by}"),
        )
        return removed

    async def apply_suspension(self, user_id: str, executed_by: str, reason: str) -> None:
        """Permanent Hidden visibility plus posting freeze, account status Suspended."""
        now = self.clock()
        async with self.db.transaction() as conn:
            await RestrictionRepository.upsert_visibility(
                conn,
                VisibilityRestriction(
                    user_id=user_id,
                    tier=VisibilityTier.HIDDEN,
                    applied_by=executed_by,
                    applied_at=now,
                    expires_at=None,
                    reason=reason,
                ),
            )
            await RestrictionRepository.upsert_posting(
                conn,
                PostingRestriction(
                    user_id=user_id,
                    restricted=True,
                    applied_by=executed_by,
                    applied_at=now,
                    expires_at=None,
                    reason=reason,
                ),
            )

        logger.warning("[ENFORCEMENT] %s suspended %s", executed_by, user_id)
        await run_best_effort(
            f"account status sync for {user_id}",
            self.push_account_status(user_id, AccountStatus.SUSPENDED, VisibilityTier.HIDDEN, True, reason),
        )
        await self.notify(user_id, NotificationLevel.SUSPENDED)

    # ------------------------------------------------------------------
    # Restriction reads (lazy expiry)
    # ------------------------------------------------------------------

    async def get_visibility_restriction(self, user_id: str) -> Optional[VisibilityRestriction]:
        now = self.clock()
        async with self.db.read() as conn:
            restriction = await RestrictionRepository.get_visibility(conn, user_id)
        if restriction is None:
            return None
        if _is_expired(restriction.expires_at, now):
            async with self.db.transaction() as conn:
                await RestrictionRepository.delete_visibility_if_expired(conn, user_id, now)
            logger.debug("[ENFORCEMENT] Visibility restriction on %s expired", user_id)
            return None
        return restriction

    async def get_posting_restriction(self, user_id: str) -> Optional[PostingRestriction]:
        now = self.clock()
        async with self.db.read() as conn:
            restriction = await RestrictionRepository.get_posting(conn, user_id)
        if restriction is None:
            return None
        if _is_expired(restriction.expires_at, now):
            async with self.db.transaction() as conn:
                await RestrictionRepository.delete_posting_if_expired(conn, user_id, now)
            logger.debug("[ENFORCEMENT] Posting restriction on %s expired", user_id)
            return None
        return restriction

    async def is_posting_allowed(self, user_id: str) -> bool:
        restriction = await self.get_posting_restriction(user_id)
        return restriction is None or not restriction.restricted

    # ------------------------------------------------------------------
    # Account-status engine
    # ------------------------------------------------------------------

    async def push_account_status(
        self,
        user_id: str,
        status: AccountStatus,
        visibility: VisibilityTier,
        freeze_posting: bool,
        reason: str,
    ) -> None:
        """Write the given state to the account-status engine.

        A Suspended account is never downgraded from here.
        """
        current = await self.account_status.get_status(user_id)
        if current.status is AccountStatus.SUSPENDED and status is not AccountStatus.SUSPENDED:
            logger.debug("[ENFORCEMENT] %s is suspended externally; not downgrading", user_id)
            return

        locks = set(current.feature_locks)
        if freeze_posting:
            locks.add(POSTING_FEATURE_LOCK)
        await self.account_status.apply_status(
            AccountStatusSnapshot(
                user_id=user_id,
                status=status,
                feature_locks=sorted(locks),
                visibility_tier=account_visibility(visibility),
            ),
            reason,
        )

    async def reconcile_account_status(self, user_id: str, reason: str = "reconcile") -> None:
        """Derive the account status from the current restriction rows and push it."""
        visibility = await self.get_visibility_restriction(user_id)
        posting = await self.get_posting_restriction(user_id)
        current = await self.account_status.get_status(user_id)
        if current.status is AccountStatus.SUSPENDED:
            return

        frozen = posting is not None and posting.restricted
        tier = visibility.tier if visibility else VisibilityTier.NORMAL
        if frozen or tier is VisibilityTier.HIDDEN:
            status = AccountStatus.HARD_RESTRICTED
        elif tier is VisibilityTier.LOW:
            status = AccountStatus.SOFT_RESTRICTED
        else:
            status = AccountStatus.ACTIVE

        locks = set(current.feature_locks)
        if frozen:
            locks.add(POSTING_FEATURE_LOCK)
        else:
            locks.discard(POSTING_FEATURE_LOCK)

        await self.account_status.apply_status(
            AccountStatusSnapshot(
                user_id=user_id,
                status=status,
                feature_locks=sorted(locks),
                visibility_tier=account_visibility(tier),
            ),
            reason,
        )

    async def synchronize_enforcement_state(self, user_id: str) -> SyncDecision:
        """
        Pull the account-status engine's view and correct local restrictions.

        Suspended forces permanent Hidden visibility and a posting freeze.
        HardRestricted floors visibility at Low. Active with an automatic
        restriction older than a day only marks the user as a lift candidate.
        """
        snapshot = await self.account_status.get_status(user_id)
        decision = SyncDecision(user_id=user_id, account_status=snapshot.status)
        now = self.clock()

        visibility = await self.get_visibility_restriction(user_id)
        posting = await self.get_posting_restriction(user_id)

        if snapshot.status is AccountStatus.SUSPENDED:
            async with self.db.transaction() as conn:
                if visibility is None or visibility.tier is not VisibilityTier.HIDDEN or visibility.expires_at is not None:
                    await RestrictionRepository.upsert_visibility(
                        conn,
                        VisibilityRestriction(
                            user_id=user_id,
                            tier=VisibilityTier.HIDDEN,
                            applied_by=SYSTEM_ACTOR,
                            applied_at=now,
                            expires_at=None,
                            reason="account_suspended",
                        ),
                    )
                    decision.actions.append("visibility_forced_hidden")
                if posting is None or not posting.restricted or posting.expires_at is not None:
                    await RestrictionRepository.upsert_posting(
                        conn,
                        PostingRestriction(
                            user_id=user_id,
                            restricted=True,
                            applied_by=SYSTEM_ACTOR,
                            applied_at=now,
                            expires_at=None,
                            reason="account_suspended",
                        ),
                    )
                    decision.actions.append("posting_forced_frozen")

        elif snapshot.status is AccountStatus.HARD_RESTRICTED:
            if visibility is None or visibility.tier is VisibilityTier.NORMAL:
                async with self.db.transaction() as conn:
                    await RestrictionRepository.upsert_visibility(
                        conn,
                        VisibilityRestriction(
                            user_id=user_id,
                            tier=VisibilityTier.LOW,
                            applied_by=SYSTEM_ACTOR,
                            applied_at=now,
                            expires_at=None,
                            reason="account_hard_restricted",
                        ),
                    )
                decision.actions.append("visibility_floored_low")

        elif snapshot.status is AccountStatus.ACTIVE:
            automatic = [
                restriction
                for restriction in (visibility, posting)
                if restriction is not None
                and restriction.applied_by == SYSTEM_ACTOR
                and now - restriction.applied_at > LIFT_CANDIDATE_AGE
            ]
            decision.lift_candidate = bool(automatic)

        if decision.actions or decision.lift_candidate:
            logger.info(
                "[ENFORCEMENT] Sync %s (%s): actions=%s lift_candidate=%s",
                user_id,
                snapshot.status,
                decision.actions,
                decision.lift_candidate,
            )
        return decision

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def notify(self, user_id: str, level: NotificationLevel) -> None:
        """Send the fixed notice for ``level``; failures are logged and dropped."""
        if not self.notifications_enabled:
            return
        await run_best_effort(
            f"{level} notice to {user_id}",
            self.notifier.send_enforcement_notice(user_id, level),
        )
