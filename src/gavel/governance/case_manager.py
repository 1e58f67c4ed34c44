"""
Moderation case lifecycle.

Cases move through a fixed transition table. A subject has at most one case
in Open or UnderReview at a time: new triggers merge their reason codes into
that case instead of opening another. The read-then-insert path is backed by
a partial unique index, and a creator that loses the insert race merges into
the winner's case.

Every mutation appends one immutable history row.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import aiosqlite

from gavel.database.database import Database
from gavel.datatypes.case_datatypes import (
    ActorType,
    CaseHistoryEntry,
    CasePriority,
    CaseResolution,
    CaseStatus,
    HumanReviewQueueItem,
    ModerationCase,
    ReasonCode,
    SYSTEM_ACTOR,
)
from gavel.datatypes.role_datatypes import ModeratorLevel
from gavel.governance.confidence_engine import ConfidenceEngine
from gavel.governance.errors import InvalidTransitionError, InvariantViolation, NotFoundError
from gavel.governance.permissions import PermissionService
from gavel.repositories.case_repo import CaseRepository, ReviewQueueRepository
from gavel.repositories.confidence_repo import ConfidenceRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, now_ts

logger = get_logger("case_manager")


CRITICAL_REASONS: FrozenSet[ReasonCode] = frozenset({
    ReasonCode.IDENTITY_FRAUD,
    ReasonCode.MINOR_SAFETY,
    ReasonCode.CRIMINAL_ACTIVITY,
})

HIGH_REASONS: FrozenSet[ReasonCode] = frozenset({
    ReasonCode.KYC_MISMATCH,
    ReasonCode.HIGH_RISK_CONTENT,
    ReasonCode.COORDINATED_ABUSE,
})

MEDIUM_REASONS: FrozenSet[ReasonCode] = frozenset({
    ReasonCode.PERSISTENT_VIOLATIONS,
})

ALWAYS_REVIEW_REASONS: FrozenSet[ReasonCode] = frozenset({
    ReasonCode.IDENTITY_FRAUD,
    ReasonCode.KYC_MISMATCH,
    ReasonCode.HIGH_RISK_CONTENT,
    ReasonCode.MINOR_SAFETY,
    ReasonCode.CRIMINAL_ACTIVITY,
    ReasonCode.PERSISTENT_VIOLATIONS,
    ReasonCode.MONETIZATION_BYPASS,
    ReasonCode.GOVERNANCE_BYPASS,
})

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6

ALLOWED_TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.OPEN: frozenset({CaseStatus.UNDER_REVIEW, CaseStatus.ESCALATED, CaseStatus.RESOLVED}),
    CaseStatus.UNDER_REVIEW: frozenset({
        CaseStatus.UNDER_REVIEW,
        CaseStatus.PENDING_ACTION,
        CaseStatus.ESCALATED,
        CaseStatus.RESOLVED,
    }),
    CaseStatus.PENDING_ACTION: frozenset({CaseStatus.ESCALATED, CaseStatus.RESOLVED}),
    CaseStatus.ESCALATED: frozenset({CaseStatus.UNDER_REVIEW, CaseStatus.RESOLVED}),
    CaseStatus.RESOLVED: frozenset({CaseStatus.APPEALED}),
    CaseStatus.APPEALED: frozenset({CaseStatus.RESOLVED}),
}

# Insert/merge attempts before giving up on a subject whose active case keeps changing
_CREATE_ATTEMPTS = 3


def determine_priority(reason_codes: Iterable[ReasonCode], confidence: float) -> CasePriority:
    """First matching rule wins: critical reasons, then high, then medium, else Low."""
    reasons = frozenset(reason_codes)
    if reasons & CRITICAL_REASONS:
        return CasePriority.CRITICAL
    if confidence > HIGH_CONFIDENCE or reasons & HIGH_REASONS:
        return CasePriority.HIGH
    if confidence > MEDIUM_CONFIDENCE or reasons & MEDIUM_REASONS:
        return CasePriority.MEDIUM
    return CasePriority.LOW


def requires_human_review(reason_codes: Iterable[ReasonCode], confidence: float) -> bool:
    return bool(frozenset(reason_codes) & ALWAYS_REVIEW_REASONS) or confidence > HIGH_CONFIDENCE


def max_priority(*priorities: Optional[CasePriority]) -> CasePriority:
    present = [priority for priority in priorities if priority is not None]
    return max(present, key=lambda priority: priority.rank, default=CasePriority.LOW)


def can_transition(current: CaseStatus, target: CaseStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(case: ModerationCase, target: CaseStatus) -> None:
    if not can_transition(case.status, target):
        raise InvalidTransitionError(case.case_id, case.status, target)


def actor_type_for(actor_id: str) -> ActorType:
    return ActorType.SYSTEM if actor_id == SYSTEM_ACTOR else ActorType.MODERATOR


def review_reason(reason_codes: Iterable[ReasonCode], confidence: float) -> str:
    """Queue label: the mandatory-review reasons present, else the confidence threshold."""
    mandatory = sorted(reason.value for reason in frozenset(reason_codes) & ALWAYS_REVIEW_REASONS)
    if mandatory:
        return ", ".join(mandatory)
    if confidence > HIGH_CONFIDENCE:
        return f"confidence {confidence:.2f}"
    return "manual review"


def _reason_values(reasons: Iterable[ReasonCode]) -> List[str]:
    return sorted(reason.value for reason in reasons)


async def apply_transition(
    conn: aiosqlite.Connection,
    case: ModerationCase,
    target: CaseStatus,
    entry: CaseHistoryEntry,
) -> None:
    """Validate and write a status change plus its history row on an open transaction."""
    validate_transition(case, target)
    await CaseRepository.update_status(conn, case.case_id, target, entry.timestamp)
    await CaseRepository.append_history(conn, case.case_id, entry)
    case.status = target


class CaseManager:
    """
    Owns case creation, assignment, escalation and resolution.

    Args:
        db: Governance database
        confidence_engine: Used to score the subject when a new case is opened
        permissions: Role lookups for assignee and reviewer checks
        clock: Current unix seconds
    """

    def __init__(
        self,
        db: Database,
        confidence_engine: ConfidenceEngine,
        permissions: PermissionService,
        clock: Clock = now_ts,
    ) -> None:
        self.db = db
        self.confidence_engine = confidence_engine
        self.permissions = permissions
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_case(
        self,
        subject_user_id: str,
        reason_codes: Iterable[ReasonCode],
        opened_by: str,
        priority: Optional[CasePriority] = None,
        require_review: bool = False,
    ) -> str:
        """
        Open a case for ``subject_user_id`` or merge into the active one.

        Args:
            subject_user_id: User the case is about
            reason_codes: Reasons for this trigger
            opened_by: ``"AUTO"`` or the moderator opening the case
            priority: Minimum priority to apply; never lowers a computed or existing priority
            require_review: Queue for human review regardless of reasons and confidence

        Returns:
            The id of the new or merged-into case.
        """
        reasons = frozenset(reason_codes)

        for _ in range(_CREATE_ATTEMPTS):
            case_id = await self._merge_into_active(subject_user_id, reasons, opened_by, priority, require_review)
            if case_id is not None:
                return case_id

            case_id = await self._insert_new(subject_user_id, reasons, opened_by, priority, require_review)
            if case_id is not None:
                return case_id

        raise InvariantViolation(f"Could not open or merge a case for {subject_user_id}")

    async def _merge_into_active(
        self,
        subject_user_id: str,
        reasons: FrozenSet[ReasonCode],
        actor_id: str,
        forced_priority: Optional[CasePriority],
        require_review: bool,
    ) -> Optional[str]:
        async with self.db.read() as conn:
            if await CaseRepository.find_active_for_subject(conn, subject_user_id) is None:
                return None

        now = self.clock()
        async with self.db.transaction() as conn:
            case = await CaseRepository.find_active_for_subject(conn, subject_user_id)
            if case is None:
                return None

            stored = await ConfidenceRepository.get(conn, subject_user_id)
            score = stored.score if stored else 0.0

            merged = case.reason_codes | reasons
            new_priority = max_priority(case.priority, determine_priority(merged, score), forced_priority)
            added = merged - case.reason_codes

            await CaseRepository.update_reasons_and_priority(conn, case.case_id, merged, new_priority, now)
            await CaseRepository.append_history(
                conn,
                case.case_id,
                CaseHistoryEntry(
                    actor_id=actor_id,
                    actor_type=actor_type_for(actor_id),
                    action="reasons_merged",
                    details={
                        "added_reasons": _reason_values(added),
                        "reason_codes": _reason_values(merged),
                        "priority": new_priority.value,
                    },
                    timestamp=now,
                ),
            )

            if case.status is CaseStatus.OPEN and (require_review or requires_human_review(merged, score)):
                await ReviewQueueRepository.upsert(
                    conn,
                    HumanReviewQueueItem(
                        case_id=case.case_id,
                        subject_user_id=subject_user_id,
                        priority=new_priority,
                        reason=review_reason(merged, score),
                        enforcement_confidence=score,
                        queued_at=now,
                    ),
                )

        logger.info(
            "[CASES] Merged %s into case %s for %s",
            _reason_values(reasons),
            case.case_id,
            subject_user_id,
        )
        return case.case_id

    async def _insert_new(
        self,
        subject_user_id: str,
        reasons: FrozenSet[ReasonCode],
        opened_by: str,
        forced_priority: Optional[CasePriority],
        require_review: bool,
    ) -> Optional[str]:
        confidence = await self.confidence_engine.calculate(subject_user_id)
        score = confidence.score
        priority = max_priority(determine_priority(reasons, score), forced_priority)
        needs_review = require_review or requires_human_review(reasons, score)

        now = self.clock()
        case = ModerationCase(
            case_id=f"case_{uuid.uuid4().hex}",
            subject_user_id=subject_user_id,
            status=CaseStatus.OPEN,
            priority=priority,
            opened_at=now,
            opened_by=opened_by,
            reason_codes=reasons,
            updated_at=now,
        )

        try:
            async with self.db.transaction() as conn:
                await CaseRepository.insert(conn, case)
                await CaseRepository.append_history(
                    conn,
                    case.case_id,
                    CaseHistoryEntry(
                        actor_id=opened_by,
                        actor_type=actor_type_for(opened_by),
                        action="created",
                        details={
                            "reason_codes": _reason_values(reasons),
                            "priority": priority.value,
                            "confidence": score,
                        },
                        timestamp=now,
                    ),
                )
                if needs_review:
                    await ReviewQueueRepository.upsert(
                        conn,
                        HumanReviewQueueItem(
                            case_id=case.case_id,
                            subject_user_id=subject_user_id,
                            priority=priority,
                            reason=review_reason(reasons, score),
                            enforcement_confidence=score,
                            queued_at=now,
                        ),
                    )
        except aiosqlite.IntegrityError:
            logger.info("[CASES] Concurrent case creation for %s; merging into the existing case", subject_user_id)
            return None

        logger.info(
            "[CASES] Opened case %s for %s (priority=%s, review=%s)",
            case.case_id,
            subject_user_id,
            priority,
            needs_review,
        )
        return case.case_id

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _load(self, conn: aiosqlite.Connection, case_id: str) -> ModerationCase:
        case = await CaseRepository.get(conn, case_id)
        if case is None:
            raise NotFoundError("Case", case_id)
        return case

    async def _other_active_case(self, conn: aiosqlite.Connection, case: ModerationCase) -> Optional[ModerationCase]:
        """The subject's Open/UnderReview case, if it is not ``case`` itself."""
        active = await CaseRepository.find_active_for_subject(conn, case.subject_user_id)
        if active is None or active.case_id == case.case_id:
            return None
        return active

    async def _fold_into_active(
        self,
        conn: aiosqlite.Connection,
        stale: ModerationCase,
        active: ModerationCase,
        item: HumanReviewQueueItem,
        now: int,
    ) -> None:
        """Carry a queued case that can no longer become active over to the subject's active case."""
        merged = active.reason_codes | stale.reason_codes
        priority = max_priority(active.priority, stale.priority, item.priority)

        await CaseRepository.update_reasons_and_priority(conn, active.case_id, merged, priority, now)
        await CaseRepository.append_history(
            conn,
            active.case_id,
            CaseHistoryEntry(
                actor_id=SYSTEM_ACTOR,
                actor_type=ActorType.SYSTEM,
                action="reasons_merged",
                details={
                    "from_case_id": stale.case_id,
                    "added_reasons": _reason_values(merged - active.reason_codes),
                    "reason_codes": _reason_values(merged),
                    "priority": priority.value,
                },
                timestamp=now,
            ),
        )
        await CaseRepository.append_history(
            conn,
            stale.case_id,
            CaseHistoryEntry(
                actor_id=SYSTEM_ACTOR,
                actor_type=ActorType.SYSTEM,
                action="merged_into",
                details={"case_id": active.case_id, "queue_reason": item.reason},
                timestamp=now,
            ),
        )
        if active.status is CaseStatus.OPEN:
            await ReviewQueueRepository.upsert(
                conn,
                HumanReviewQueueItem(
                    case_id=active.case_id,
                    subject_user_id=active.subject_user_id,
                    priority=priority,
                    reason=item.reason,
                    enforcement_confidence=item.enforcement_confidence,
                    queued_at=now,
                ),
            )
        logger.info("[CASES] Folded queued case %s into active case %s", stale.case_id, active.case_id)

    async def assign_case(self, case_id: str, assignee_id: str, assigned_by: str) -> ModerationCase:
        """Hand the case to a Trusted Mod or Admin and move it to UnderReview."""
        await self.permissions.require_level(assignee_id, ModeratorLevel.TRUSTED_MOD, "case assignment")

        now = self.clock()
        try:
            async with self.db.transaction() as conn:
                case = await self._load(conn, case_id)
                validate_transition(case, CaseStatus.UNDER_REVIEW)
                other = await self._other_active_case(conn, case)
                if other is not None:
                    raise InvariantViolation(
                        f"Case {case_id} cannot be reopened: {case.subject_user_id} "
                        f"already has active case {other.case_id}"
                    )
                await CaseRepository.assign(conn, case_id, assignee_id, now)
                await CaseRepository.append_history(
                    conn,
                    case_id,
                    CaseHistoryEntry(
                        actor_id=assigned_by,
                        actor_type=actor_type_for(assigned_by),
                        action="assigned",
                        details={"assignee_id": assignee_id, "previous_status": case.status.value},
                        timestamp=now,
                    ),
                )
                await ReviewQueueRepository.remove(conn, case_id)
        except aiosqlite.IntegrityError as exc:
            raise InvariantViolation(f"Case {case_id} conflicts with another active case") from exc

        case.status = CaseStatus.UNDER_REVIEW
        case.assignee_id = assignee_id
        case.updated_at = now
        logger.info("[CASES] Case %s assigned to %s by %s", case_id, assignee_id, assigned_by)
        return case

    async def resolve_case(self, case_id: str, reviewer_id: str, resolution: CaseResolution) -> ModerationCase:
        await self.permissions.require_level(reviewer_id, ModeratorLevel.ADMIN, "case resolution")

        now = self.clock()
        async with self.db.transaction() as conn:
            case = await self._load(conn, case_id)
            validate_transition(case, CaseStatus.RESOLVED)
            await CaseRepository.resolve(conn, case_id, resolution, reviewer_id, now)
            await CaseRepository.append_history(
                conn,
                case_id,
                CaseHistoryEntry(
                    actor_id=reviewer_id,
                    actor_type=ActorType.MODERATOR,
                    action="resolved",
                    details={
                        "outcome": resolution.outcome.value,
                        "review_note": resolution.review_note,
                        "previous_status": case.status.value,
                    },
                    timestamp=now,
                ),
            )
            await ReviewQueueRepository.remove(conn, case_id)

        case.status = CaseStatus.RESOLVED
        case.resolution = resolution
        case.resolved_by = reviewer_id
        case.resolved_at = now
        case.updated_at = now
        logger.info("[CASES] Case %s resolved by %s as %s", case_id, reviewer_id, resolution.outcome)
        return case

    async def escalate_case(self, case_id: str, actor_id: str, note: str = "") -> ModerationCase:
        """Escalate to admins. The case goes back on the review queue at Critical."""
        await self.permissions.require_level(actor_id, ModeratorLevel.TRUSTED_MOD, "case escalation")

        now = self.clock()
        async with self.db.transaction() as conn:
            case = await self._load(conn, case_id)
            await apply_transition(
                conn,
                case,
                CaseStatus.ESCALATED,
                CaseHistoryEntry(
                    actor_id=actor_id,
                    actor_type=ActorType.MODERATOR,
                    action="escalated",
                    details={"note": note},
                    timestamp=now,
                ),
            )
            stored = await ConfidenceRepository.get(conn, case.subject_user_id)
            await ReviewQueueRepository.upsert(
                conn,
                HumanReviewQueueItem(
                    case_id=case_id,
                    subject_user_id=case.subject_user_id,
                    priority=CasePriority.CRITICAL,
                    reason="escalated",
                    enforcement_confidence=stored.score if stored else 0.0,
                    queued_at=now,
                ),
            )

        logger.info("[CASES] Case %s escalated by %s", case_id, actor_id)
        return case

    async def mark_pending_action(self, case_id: str, actor_id: str, note: str = "") -> ModerationCase:
        await self.permissions.require_level(actor_id, ModeratorLevel.TRUSTED_MOD, "pending action")

        now = self.clock()
        async with self.db.transaction() as conn:
            case = await self._load(conn, case_id)
            await apply_transition(
                conn,
                case,
                CaseStatus.PENDING_ACTION,
                CaseHistoryEntry(
                    actor_id=actor_id,
                    actor_type=ActorType.MODERATOR,
                    action="pending_action",
                    details={"note": note},
                    timestamp=now,
                ),
            )
        return case

    async def add_case_note(self, case_id: str, actor_id: str, note: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Append a free-form note to the case history without changing its state."""
        await self.permissions.require_level(actor_id, ModeratorLevel.COMMUNITY_MOD, "case note")

        async with self.db.transaction() as conn:
            await self._load(conn, case_id)
            await CaseRepository.append_history(
                conn,
                case_id,
                CaseHistoryEntry(
                    actor_id=actor_id,
                    actor_type=ActorType.MODERATOR,
                    action="note",
                    details={"note": note, **(details or {})},
                    timestamp=self.clock(),
                ),
            )

    # ------------------------------------------------------------------
    # Reads and queue
    # ------------------------------------------------------------------

    async def get_case(self, case_id: str) -> ModerationCase:
        """Return the case with its full history, oldest entry first."""
        async with self.db.read() as conn:
            case = await self._load(conn, case_id)
            case.history = await CaseRepository.get_history(conn, case_id)
        return case

    async def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        priority: Optional[CasePriority] = None,
        subject_user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ModerationCase]:
        async with self.db.read() as conn:
            return await CaseRepository.list_cases(conn, status, priority, subject_user_id, limit)

    async def list_review_queue(self, limit: int = 50) -> List[HumanReviewQueueItem]:
        async with self.db.read() as conn:
            return await ReviewQueueRepository.list_items(conn, limit)

    async def claim_next_review_item(self, moderator_id: str) -> Optional[ModerationCase]:
        """Assign the highest-priority, oldest queued case to ``moderator_id``.

        Items whose case can no longer be reviewed are dropped. A queued case
        whose subject meanwhile got another active case is folded into that
        case, which is then claimed in its place. Returns None when the queue
        is empty.
        """
        await self.permissions.require_level(moderator_id, ModeratorLevel.TRUSTED_MOD, "review claim")

        now = self.clock()
        try:
            async with self.db.transaction() as conn:
                while True:
                    items = await ReviewQueueRepository.list_items(conn, limit=1)
                    if not items:
                        return None
                    item = items[0]
                    case = await self._load(conn, item.case_id)
                    await ReviewQueueRepository.remove(conn, item.case_id)
                    if not can_transition(case.status, CaseStatus.UNDER_REVIEW):
                        logger.warning("[CASES] Dropped stale queue item for case %s (%s)", case.case_id, case.status)
                        continue
                    other = await self._other_active_case(conn, case)
                    if other is not None:
                        await self._fold_into_active(conn, case, other, item, now)
                        continue
                    break

                await CaseRepository.assign(conn, case.case_id, moderator_id, now)
                await CaseRepository.append_history(
                    conn,
                    case.case_id,
                    CaseHistoryEntry(
                        actor_id=moderator_id,
                        actor_type=ActorType.MODERATOR,
                        action="claimed",
                        details={"queue_reason": item.reason, "previous_status": case.status.value},
                        timestamp=now,
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise InvariantViolation("Review claim conflicts with another active case") from exc

        case.status = CaseStatus.UNDER_REVIEW
        case.assignee_id = moderator_id
        case.updated_at = now
        logger.info("[CASES] %s claimed case %s from the review queue", moderator_id, case.case_id)
        return case
