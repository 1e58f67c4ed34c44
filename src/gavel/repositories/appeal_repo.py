"""
Repositories for enforcement appeals and permanent-suspension quorum records.
"""

from __future__ import annotations

from typing import List, Optional

import aiosqlite

from gavel.datatypes.appeal_datatypes import (
    AppealDecision,
    AppealOutcome,
    AppealStatus,
    ApprovalStatus,
    EnforcementAppeal,
    SuspensionApproval,
)


def _row_to_appeal(row: aiosqlite.Row) -> EnforcementAppeal:
    outcome = None
    if row["decision"]:
        outcome = AppealOutcome(
            decision=AppealDecision(row["decision"]),
            explanation=row["outcome_explanation"] or "",
        )
    return EnforcementAppeal(
        appeal_id=row["appeal_id"],
        case_id=row["case_id"],
        user_id=row["user_id"],
        status=AppealStatus(row["status"]),
        explanation=row["explanation"],
        submitted_at=row["submitted_at"],
        reviewed_by=row["reviewed_by"],
        reviewed_at=row["reviewed_at"],
        outcome=outcome,
    )


class AppealRepository:
    """CRUD for enforcement_appeals."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, appeal: EnforcementAppeal) -> None:
        """Raises aiosqlite.IntegrityError if the case already has a pending appeal."""
        await conn.execute(
            """
            INSERT INTO enforcement_appeals (appeal_id, case_id, user_id, status, explanation, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                appeal.appeal_id,
                appeal.case_id,
                appeal.user_id,
                appeal.status.value,
                appeal.explanation,
                appeal.submitted_at,
            ),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, appeal_id: str) -> Optional[EnforcementAppeal]:
        async with conn.execute(
            "SELECT * FROM enforcement_appeals WHERE appeal_id = ?", (appeal_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_appeal(row) if row else None

    @staticmethod
    async def find_pending_for_case(conn: aiosqlite.Connection, case_id: str) -> Optional[EnforcementAppeal]:
        async with conn.execute(
            "SELECT * FROM enforcement_appeals WHERE case_id = ? AND status = ? LIMIT 1",
            (case_id, AppealStatus.PENDING.value),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_appeal(row) if row else None

    @staticmethod
    async def list_for_case(conn: aiosqlite.Connection, case_id: str) -> List[EnforcementAppeal]:
        async with conn.execute(
            "SELECT * FROM enforcement_appeals WHERE case_id = ? ORDER BY submitted_at, appeal_id",
            (case_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_appeal(row) for row in rows]

    @staticmethod
    async def update_status(
        conn: aiosqlite.Connection,
        appeal_id: str,
        status: AppealStatus,
        reviewed_by: Optional[str] = None,
    ) -> None:
        await conn.execute(
            "UPDATE enforcement_appeals SET status = ?, reviewed_by = COALESCE(?, reviewed_by) WHERE appeal_id = ?",
            (status.value, reviewed_by, appeal_id),
        )

    @staticmethod
    async def record_decision(
        conn: aiosqlite.Connection,
        appeal_id: str,
        outcome: AppealOutcome,
        reviewed_by: str,
        reviewed_at: int,
    ) -> None:
        await conn.execute(
            """
            UPDATE enforcement_appeals
            SET status = ?, decision = ?, outcome_explanation = ?, reviewed_by = ?, reviewed_at = ?
            WHERE appeal_id = ?
            """,
            (
                outcome.decision.appeal_status.value,
                outcome.decision.value,
                outcome.explanation,
                reviewed_by,
                reviewed_at,
                appeal_id,
            ),
        )


class SuspensionApprovalRepository:
    """CRUD for suspension_approvals and its suspension_approvers child table."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, approval: SuspensionApproval) -> None:
        await conn.execute(
            """
            INSERT INTO suspension_approvals (approval_id, target_user_id, requester_id, reason, case_id,
                                              approvals_needed, status, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                approval.approval_id,
                approval.target_user_id,
                approval.requester_id,
                approval.reason,
                approval.case_id,
                approval.approvals_needed,
                approval.status.value,
                approval.created_at,
                approval.expires_at,
            ),
        )
        for approver_id in approval.approvers:
            await SuspensionApprovalRepository.add_approver(
                conn, approval.approval_id, approver_id, approval.created_at
            )

    @staticmethod
    async def add_approver(conn: aiosqlite.Connection, approval_id: str, approver_id: str, approved_at: int) -> bool:
        """Record one approver.

        Returns:
            False if this approver was already recorded (the primary key
            rejects the second insert), True otherwise.
        """
        cursor = await conn.execute(
            """
            INSERT OR IGNORE INTO suspension_approvers (approval_id, approver_id, approved_at)
            VALUES (?, ?, ?)
            """,
            (approval_id, approver_id, approved_at),
        )
        return cursor.rowcount > 0

    @staticmethod
    async def get(conn: aiosqlite.Connection, approval_id: str) -> Optional[SuspensionApproval]:
        async with conn.execute(
            "SELECT * FROM suspension_approvals WHERE approval_id = ?", (approval_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None

        async with conn.execute(
            "SELECT approver_id FROM suspension_approvers WHERE approval_id = ? ORDER BY approved_at, approver_id",
            (approval_id,),
        ) as cursor:
            approver_rows = await cursor.fetchall()

        return SuspensionApproval(
            approval_id=row["approval_id"],
            target_user_id=row["target_user_id"],
            requester_id=row["requester_id"],
            reason=row["reason"],
            case_id=row["case_id"],
            approvals_needed=row["approvals_needed"],
            status=ApprovalStatus(row["status"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            approvers=[r["approver_id"] for r in approver_rows],
            approved_at=row["approved_at"],
            executed_at=row["executed_at"],
            executed_by=row["executed_by"],
        )

    @staticmethod
    async def update_status(
        conn: aiosqlite.Connection,
        approval_id: str,
        status: ApprovalStatus,
        at: Optional[int] = None,
        actor_id: Optional[str] = None,
    ) -> None:
        """Move the record to ``status``, stamping the matching timestamp column."""
        if status is ApprovalStatus.APPROVED:
            await conn.execute(
                "UPDATE suspension_approvals SET status = ?, approved_at = ? WHERE approval_id = ?",
                (status.value, at, approval_id),
            )
        elif status is ApprovalStatus.EXECUTED:
            await conn.execute(
                "UPDATE suspension_approvals SET status = ?, executed_at = ?, executed_by = ? WHERE approval_id = ?",
                (status.value, at, actor_id, approval_id),
            )
        else:
            await conn.execute(
                "UPDATE suspension_approvals SET status = ? WHERE approval_id = ?",
                (status.value, approval_id),
            )
