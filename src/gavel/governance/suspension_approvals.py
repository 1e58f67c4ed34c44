"""
Multi-admin quorum for permanent suspensions.

A request records the requester as the first approver and needs
``APPROVALS_NEEDED`` further distinct admins within 48 hours. Approvers live
in a child table keyed by (approval, approver), so a repeat approval is
rejected by the primary key and concurrent approvals never lose each other.
"""

from __future__ import annotations

import uuid
from typing import Optional

from gavel.database.database import Database
from gavel.datatypes.appeal_datatypes import ApprovalResult, ApprovalStatus, SuspensionApproval
from gavel.datatypes.case_datatypes import ActorType, CaseHistoryEntry
from gavel.datatypes.role_datatypes import ModeratorLevel
from gavel.governance.enforcement_dispatcher import EnforcementDispatcher
from gavel.governance.errors import (
    ApprovalExpiredError,
    DuplicateApproverError,
    InvariantViolation,
    NotFoundError,
)
from gavel.governance.permissions import PermissionService
from gavel.repositories.appeal_repo import SuspensionApprovalRepository
from gavel.repositories.case_repo import CaseRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, hours, now_ts

logger = get_logger("suspension_approvals")

APPROVALS_NEEDED = 2
APPROVAL_TTL = hours(48)


def is_expired(approval: SuspensionApproval, now: int) -> bool:
    """Only pending records can lapse; approved ones stay executable."""
    if approval.status is ApprovalStatus.EXPIRED:
        return True
    return approval.status is ApprovalStatus.PENDING and now >= approval.expires_at


class SuspensionApprovalManager:
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

    async def request_approval(
        self,
        target_user_id: str,
        requester_id: str,
        reason: str,
        case_id: Optional[str] = None,
    ) -> str:
        """Open a quorum record. Returns the approval id."""
        await self.permissions.require_level(requester_id, ModeratorLevel.ADMIN, "suspension request")

        now = self.clock()
        approval = SuspensionApproval(
            approval_id=f"susp_{uuid.uuid4().hex}",
            target_user_id=target_user_id,
            requester_id=requester_id,
            reason=reason,
            case_id=case_id,
            approvals_needed=APPROVALS_NEEDED,
            status=ApprovalStatus.PENDING,
            created_at=now,
            expires_at=now + APPROVAL_TTL,
            approvers=[requester_id],
        )
        async with self.db.transaction() as conn:
            await SuspensionApprovalRepository.insert(conn, approval)

        logger.info(
            "[SUSPENSION] %s requested suspension of %s (%s)", requester_id, target_user_id, approval.approval_id
        )
        return approval.approval_id

    async def _expire(self, approval: SuspensionApproval) -> None:
        if approval.status is ApprovalStatus.EXPIRED:
            return
        async with self.db.transaction() as conn:
            await SuspensionApprovalRepository.update_status(conn, approval.approval_id, ApprovalStatus.EXPIRED)
        approval.status = ApprovalStatus.EXPIRED
        logger.info("[SUSPENSION] Approval %s expired", approval.approval_id)

    async def get_approval(self, approval_id: str) -> SuspensionApproval:
        """Return the record, marking it Expired first if its deadline passed."""
        async with self.db.read() as conn:
            approval = await SuspensionApprovalRepository.get(conn, approval_id)
        if approval is None:
            raise NotFoundError("Suspension approval", approval_id)
        if is_expired(approval, self.clock()):
            await self._expire(approval)
        return approval

    async def approve(self, approval_id: str, approver_id: str) -> ApprovalResult:
        """
        Add ``approver_id`` to the quorum.

        Raises:
            NotFoundError: Unknown approval id
            ApprovalExpiredError: The 48h window has passed
            AuthorizationError: Approver is not an admin
            DuplicateApproverError: Approver already on the record (nothing changes)
            InvariantViolation: The record is no longer pending
        """
        approval = await self.get_approval(approval_id)
        if approval.status is ApprovalStatus.EXPIRED:
            raise ApprovalExpiredError(approval_id, approval.expires_at)

        await self.permissions.require_level(approver_id, ModeratorLevel.ADMIN, "suspension approval")

        if approver_id in approval.approvers:
            raise DuplicateApproverError(approval_id, approver_id)
        if approval.status is not ApprovalStatus.PENDING:
            raise InvariantViolation(f"Suspension approval {approval_id} is already {approval.status}")

        now = self.clock()
        async with self.db.transaction() as conn:
            if not await SuspensionApprovalRepository.add_approver(conn, approval_id, approver_id, now):
                raise DuplicateApproverError(approval_id, approver_id)
            current = await SuspensionApprovalRepository.get(conn, approval_id)
            if current is None:
                raise NotFoundError("Suspension approval", approval_id)
            if current.status is not ApprovalStatus.PENDING:
                raise InvariantViolation(f"Suspension approval {approval_id} is already {current.status}")
            actioned = current.quorum_reached
            if actioned:
                await SuspensionApprovalRepository.update_status(conn, approval_id, ApprovalStatus.APPROVED, at=now)

        logger.info(
            "[SUSPENSION] %s approved %s (%d/%d)",
            approver_id,
            approval_id,
            len(current.approvers),
            current.approvals_needed + 1,
        )
        if actioned:
            logger.warning("[SUSPENSION] Quorum reached for %s on %s", approval_id, current.target_user_id)
        return ApprovalResult(approved=True, actioned=actioned, approvals=len(current.approvers))

    async def execute_suspension(self, approval_id: str, executor_id: str) -> SuspensionApproval:
        """Carry out an approved suspension and mark the record Executed."""
        await self.permissions.require_level(executor_id, ModeratorLevel.ADMIN, "suspension execution")

        approval = await self.get_approval(approval_id)
        if approval.status is not ApprovalStatus.APPROVED:
            raise InvariantViolation(f"Suspension approval {approval_id} is {approval.status}, not approved")

        await self.dispatcher.apply_suspension(
            approval.target_user_id, executor_id, f"suspension_approval:{approval_id}"
        )

        now = self.clock()
        async with self.db.transaction() as conn:
            await SuspensionApprovalRepository.update_status(
                conn, approval_id, ApprovalStatus.EXECUTED, at=now, actor_id=executor_id
            )
            if approval.case_id and await CaseRepository.get(conn, approval.case_id) is not None:
                await CaseRepository.append_history(
                    conn,
                    approval.case_id,
                    CaseHistoryEntry(
                        actor_id=executor_id,
                        actor_type=ActorType.MODERATOR,
                        action="suspension_executed",
                        details={"approval_id": approval_id, "approvers": approval.approvers},
                        timestamp=now,
                    ),
                )

        approval.status = ApprovalStatus.EXECUTED
        approval.executed_at = now
        approval.executed_by = executor_id
        return approval
