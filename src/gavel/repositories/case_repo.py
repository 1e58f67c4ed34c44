"""
Repositories for moderation cases, their history, and the human review queue.

History rows are only ever inserted. Each append is its own INSERT, so
concurrent writers from different actors never overwrite each other's entries.
"""

from __future__ import annotations

import json
from typing import Iterable, List, Optional

import aiosqlite

from gavel.datatypes.case_datatypes import (
    ActorType,
    CaseHistoryEntry,
    CasePriority,
    CaseResolution,
    CaseStatus,
    HumanReviewQueueItem,
    ModerationCase,
    ReasonCode,
    ResolutionOutcome,
)


def _encode_reasons(reasons: Iterable[ReasonCode]) -> str:
    return json.dumps(sorted(reason.value for reason in reasons))


def _row_to_case(row: aiosqlite.Row) -> ModerationCase:
    resolution = None
    if row["resolution_outcome"]:
        resolution = CaseResolution(
            outcome=ResolutionOutcome(row["resolution_outcome"]),
            review_note=row["resolution_note"] or "",
        )
    return ModerationCase(
        case_id=row["case_id"],
        subject_user_id=row["subject_user_id"],
        status=CaseStatus(row["status"]),
        priority=CasePriority(row["priority"]),
        opened_at=row["opened_at"],
        opened_by=row["opened_by"],
        reason_codes=frozenset(ReasonCode(value) for value in json.loads(row["reason_codes"])),
        assignee_id=row["assignee_id"],
        resolution=resolution,
        resolved_by=row["resolved_by"],
        resolved_at=row["resolved_at"],
        updated_at=row["updated_at"],
    )


class CaseRepository:
    """CRUD for moderation_cases and case_history."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def insert(conn: aiosqlite.Connection, case: ModerationCase) -> None:
        """Insert a new case. Raises aiosqlite.IntegrityError if the subject
        already has an Open/UnderReview case."""
        await conn.execute(
            """
            INSERT INTO moderation_cases (case_id, subject_user_id, status, priority, opened_at,
                                          opened_by, assignee_id, reason_codes, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                case.case_id,
                case.subject_user_id,
                case.status.value,
                case.priority.value,
                case.opened_at,
                case.opened_by,
                case.assignee_id,
                _encode_reasons(case.reason_codes),
                case.updated_at or case.opened_at,
            ),
        )

    @staticmethod
    async def update_reasons_and_priority(
        conn: aiosqlite.Connection,
        case_id: str,
        reasons: Iterable[ReasonCode],
        priority: CasePriority,
        updated_at: int,
    ) -> None:
        await conn.execute(
            "UPDATE moderation_cases SET reason_codes = ?, priority = ?, updated_at = ? WHERE case_id = ?",
            (_encode_reasons(reasons), priority.value, updated_at, case_id),
        )

    @staticmethod
    async def update_status(
        conn: aiosqlite.Connection,
        case_id: str,
        status: CaseStatus,
        updated_at: int,
    ) -> None:
        await conn.execute(
            "UPDATE moderation_cases SET status = ?, updated_at = ? WHERE case_id = ?",
            (status.value, updated_at, case_id),
        )

    @staticmethod
    async def assign(
        conn: aiosqlite.Connection,
        case_id: str,
        assignee_id: str,
        updated_at: int,
    ) -> None:
        await conn.execute(
            "UPDATE moderation_cases SET assignee_id = ?, status = ?, updated_at = ? WHERE case_id = ?",
            (assignee_id, CaseStatus.UNDER_REVIEW.value, updated_at, case_id),
        )

    @staticmethod
    async def resolve(
        conn: aiosqlite.Connection,
        case_id: str,
        resolution: CaseResolution,
        resolved_by: str,
        resolved_at: int,
    ) -> None:
        await conn.execute(
            """
            UPDATE moderation_cases
            SET status = ?, resolution_outcome = ?, resolution_note = ?,
                resolved_by = ?, resolved_at = ?, updated_at = ?
            WHERE case_id = ?
            """,
            (
                CaseStatus.RESOLVED.value,
                resolution.outcome.value,
                resolution.review_note,
                resolved_by,
                resolved_at,
                resolved_at,
                case_id,
            ),
        )

    @staticmethod
    async def append_history(conn: aiosqlite.Connection, case_id: str, entry: CaseHistoryEntry) -> None:
        await conn.execute(
            """
            INSERT INTO case_history (case_id, actor_id, actor_type, action, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                case_id,
                entry.actor_id,
                entry.actor_type.value,
                entry.action,
                json.dumps(entry.details, default=str),
                entry.timestamp,
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get(conn: aiosqlite.Connection, case_id: str) -> Optional[ModerationCase]:
        async with conn.execute("SELECT * FROM moderation_cases WHERE case_id = ?", (case_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_case(row) if row else None

    @staticmethod
    async def get_history(conn: aiosqlite.Connection, case_id: str) -> List[CaseHistoryEntry]:
        async with conn.execute(
            "SELECT * FROM case_history WHERE case_id = ? ORDER BY id", (case_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            CaseHistoryEntry(
                actor_id=row["actor_id"],
                actor_type=ActorType(row["actor_type"]),
                action=row["action"],
                details=json.loads(row["details"]),
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    @staticmethod
    async def find_active_for_subject(conn: aiosqlite.Connection, subject_user_id: str) -> Optional[ModerationCase]:
        """Return the subject's Open/UnderReview case, if any."""
        async with conn.execute(
            """
            SELECT * FROM moderation_cases
            WHERE subject_user_id = ? AND status IN (?, ?)
            ORDER BY opened_at LIMIT 1
            """,
            (subject_user_id, CaseStatus.OPEN.value, CaseStatus.UNDER_REVIEW.value),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_case(row) if row else None

    @staticmethod
    async def list_resolved_for_subject(conn: aiosqlite.Connection, subject_user_id: str) -> List[ModerationCase]:
        """Cases that carry a resolution (Resolved, or Appealed after resolving)."""
        async with conn.execute(
            """
            SELECT * FROM moderation_cases
            WHERE subject_user_id = ? AND resolution_outcome IS NOT NULL
            ORDER BY resolved_at
            """,
            (subject_user_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_case(row) for row in rows]

    @staticmethod
    async def list_cases(
        conn: aiosqlite.Connection,
        status: Optional[CaseStatus] = None,
        priority: Optional[CasePriority] = None,
        subject_user_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ModerationCase]:
        clauses: List[str] = []
        params: List[object] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(priority.value)
        if subject_user_id is not None:
            clauses.append("subject_user_id = ?")
            params.append(subject_user_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(int(limit))
        async with conn.execute(
            f"SELECT * FROM moderation_cases {where} ORDER BY opened_at DESC, case_id LIMIT ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_case(row) for row in rows]

    @staticmethod
    async def list_subjects_with_cases(conn: aiosqlite.Connection) -> List[str]:
        async with conn.execute(
            "SELECT DISTINCT subject_user_id FROM moderation_cases ORDER BY subject_user_id"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]


class ReviewQueueRepository:
    """CRUD for the review_queue table (one item per case)."""

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, item: HumanReviewQueueItem) -> None:
        """Queue a case, or refresh its priority/reason if already queued.
        The original ``queued_at`` is kept so the case does not lose its place."""
        await conn.execute(
            """
            INSERT INTO review_queue (case_id, subject_user_id, priority, priority_rank,
                                      reason, enforcement_confidence, queued_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(case_id) DO UPDATE SET
                priority = excluded.priority,
                priority_rank = excluded.priority_rank,
                reason = excluded.reason,
                enforcement_confidence = excluded.enforcement_confidence
            """,
            (
                item.case_id,
                item.subject_user_id,
                item.priority.value,
                item.priority.rank,
                item.reason,
                item.enforcement_confidence,
                item.queued_at,
            ),
        )

    @staticmethod
    async def remove(conn: aiosqlite.Connection, case_id: str) -> None:
        await conn.execute("DELETE FROM review_queue WHERE case_id = ?", (case_id,))

    @staticmethod
    async def list_items(conn: aiosqlite.Connection, limit: int = 50) -> List[HumanReviewQueueItem]:
        """Return queued items, highest priority first, then oldest first."""
        async with conn.execute(
            "SELECT * FROM review_queue ORDER BY priority_rank DESC, queued_at, case_id LIMIT ?",
            (int(limit),),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            HumanReviewQueueItem(
                case_id=row["case_id"],
                subject_user_id=row["subject_user_id"],
                priority=CasePriority(row["priority"]),
                reason=row["reason"],
                enforcement_confidence=row["enforcement_confidence"],
                queued_at=row["queued_at"],
            )
            for row in rows
        ]
