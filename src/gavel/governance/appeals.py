"""
Appeals against resolved cases.

A user may appeal a case they are the subject of once it is Resolved and no
other appeal for it is pending. Submitting moves the case to Appealed; it
stays there until an admin resolves it again, so a further appeal is only
possible after that second resolution.
"""

from __future__ import annotations

import uuid
from typing import List

import aiosqlite

from gavel.database.database import Database
from gavel.datatypes.appeal_datatypes import (
    AppealDecision,
    AppealOutcome,
    AppealStatus,
    EnforcementAppeal,
)
from gavel.datatypes.case_datatypes import ActorType, CaseHistoryEntry, CaseStatus, ModerationCase
from gavel.datatypes.role_datatypes import ModeratorLevel
from gavel.governance.best_effort import run_best_effort
from gavel.governance.case_manager import apply_transition
from gavel.governance.enforcement_dispatcher import EnforcementDispatcher
from gavel.governance.errors import InvariantViolation, NotFoundError
from gavel.governance.permissions import PermissionService
from gavel.repositories.appeal_repo import AppealRepository
from gavel.repositories.case_repo import CaseRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, now_ts

logger = get_logger("appeals")


def check_appealable(case: ModerationCase, user_id: str) -> None:
    """Raise InvariantViolation unless ``user_id`` may appeal ``case`` right now."""
    if case.subject_user_id != user_id:
        raise InvariantViolation(f"Case {case.case_id} does not belong to {user_id}")
    if case.status is not CaseStatus.RESOLVED:
        raise InvariantViolation(f"Case {case.case_id} is {case.status}, only resolved cases can be appealed")


class AppealManager:
    def __init__(
        self,
        db: Database,
        permissions: PermissionService,
        dispatcher: EnforcementDispatcher,
        clock: Clock = now_ts,
    ) -> None:
        self.db = db
        self.permissions = permissions
        self.dispatcher = dispatcher
        self.clock = clock

    async def submit_appeal(self, case_id: str, user_id: str, explanation: str) -> str:
        """
        File an appeal for a resolved case.

        Raises:
            NotFoundError: The case does not exist
            InvariantViolation: Wrong owner, case not Resolved, or an appeal is already pending

        Returns:
            The new appeal id.
        """
        async with self.db.read() as conn:
            case = await CaseRepository.get(conn, case_id)
            if case is None:
                raise NotFoundError("Case", case_id)
            check_appealable(case, user_id)
            if await AppealRepository.find_pending_for_case(conn, case_id) is not None:
                raise InvariantViolation(f"Case {case_id} already has a pending appeal")

        now = self.clock()
        appeal = EnforcementAppeal(
            appeal_id=f"appeal_{uuid.uuid4().hex}",
            case_id=case_id,
            user_id=user_id,
            status=AppealStatus.PENDING,
            explanation=explanation,
            submitted_at=now,
        )

        try:
            async with self.db.transaction() as conn:
                case = await CaseRepository.get(conn, case_id)
                if case is None:
                    raise NotFoundError("Case", case_id)
                check_appealable(case, user_id)
                await AppealRepository.insert(conn, appeal)
                await apply_transition(
                    conn,
                    case,
                    CaseStatus.APPEALED,
                    CaseHistoryEntry(
                        actor_id=user_id,
                        actor_type=ActorType.USER,
                        action="appeal_submitted",
                        details={"appeal_id": appeal.appeal_id},
                        timestamp=now,
                    ),
                )
        except aiosqlite.IntegrityError as exc:
            raise InvariantViolation(f"Case {case_id} already has a pending appeal") from exc

        logger.info("[APPEALS] %s appealed case %s (%s)", user_id, case_id, appeal.appeal_id)
        return appeal.appeal_id

    async def get_appeal(self, appeal_id: str) -> EnforcementAppeal:
        async with self.db.read() as conn:
            appeal = await AppealRepository.get(conn, appeal_id)
        if appeal is None:
            raise NotFoundError("Appeal", appeal_id)
        return appeal

    async def list_appeals(self, case_id: str) -> List[EnforcementAppeal]:
        """Every appeal filed against ``case_id``, oldest first."""
        async with self.db.read() as conn:
            return await AppealRepository.list_for_case(conn, case_id)

    async def start_appeal_review(self, appeal_id: str, reviewer_id: str) -> EnforcementAppeal:
        """Move a pending appeal to UnderReview."""
        await self.permissions.require_level(reviewer_id, ModeratorLevel.ADMIN, "appeal review")

        async with self.db.transaction() as conn:
            appeal = await AppealRepository.get(conn, appeal_id)
            if appeal is None:
                raise NotFoundError("Appeal", appeal_id)
            if appeal.status is not AppealStatus.PENDING:
                raise InvariantViolation(f"Appeal {appeal_id} is {appeal.status}, not pending")
            await AppealRepository.update_status(conn, appeal_id, AppealStatus.UNDER_REVIEW, reviewer_id)

        appeal.status = AppealStatus.UNDER_REVIEW
        appeal.reviewed_by = reviewer_id
        return appeal

    async def review_appeal(
        self,
        appeal_id: str,
        reviewer_id: str,
        decision: AppealDecision,
        explanation: str,
    ) -> EnforcementAppeal:
        """
        Record an admin decision on an appeal.

        Upheld rejects the appeal; Overturned and Modified approve it. An
        overturned appeal also lifts the user's current restrictions.
        """
        await self.permissions.require_level(reviewer_id, ModeratorLevel.ADMIN, "appeal review")

        now = self.clock()
        outcome = AppealOutcome(decision=decision, explanation=explanation)

        async with self.db.transaction() as conn:
            appeal = await AppealRepository.get(conn, appeal_id)
            if appeal is None:
                raise NotFoundError("Appeal", appeal_id)
            if appeal.status not in (AppealStatus.PENDING, AppealStatus.UNDER_REVIEW):
                raise InvariantViolation(f"Appeal {appeal_id} has already been decided ({appeal.status})")

            await AppealRepository.record_decision(conn, appeal_id, outcome, reviewer_id, now)
            await CaseRepository.append_history(
                conn,
                appeal.case_id,
                CaseHistoryEntry(
                    actor_id=reviewer_id,
                    actor_type=ActorType.MODERATOR,
                    action="appeal_reviewed",
                    details={
                        "appeal_id": appeal_id,
                        "decision": decision.value,
                        "explanation": explanation,
                    },
                    timestamp=now,
                ),
            )

        appeal.status = decision.appeal_status
        appeal.outcome = outcome
        appeal.reviewed_by = reviewer_id
        appeal.reviewed_at = now

        logger.info("[APPEALS] Appeal %s %s by %s", appeal_id, decision, reviewer_id)

        if decision is AppealDecision.OVERTURNED:
            await run_best_effort(
                f"lifting restrictions after overturned appeal {appeal_id}",
                self.dispatcher.clear_restrictions(appeal.user_id, reviewer_id, f"appeal_overturned:{appeal_id}"),
            )
        return appeal
