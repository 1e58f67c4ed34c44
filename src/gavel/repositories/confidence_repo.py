"""
Repository for stored enforcement confidence scores (one row per user).
"""

from __future__ import annotations

import json
from typing import List, Optional

import aiosqlite

from gavel.datatypes.confidence_datatypes import ConfidenceSource, EnforcementConfidence


class ConfidenceRepository:

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, confidence: EnforcementConfidence) -> None:
        """Overwrite the stored score for the user. Scores are never merged."""
        await conn.execute(
            """
            INSERT INTO enforcement_confidence (user_id, score, sources, calculated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                score = excluded.score,
                sources = excluded.sources,
                calculated_at = excluded.calculated_at
            """,
            (
                confidence.user_id,
                confidence.score,
                json.dumps([source.to_dict() for source in confidence.sources]),
                confidence.calculated_at,
            ),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, user_id: str) -> Optional[EnforcementConfidence]:
        async with conn.execute(
            "SELECT * FROM enforcement_confidence WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return EnforcementConfidence(
            user_id=row["user_id"],
            score=row["score"],
            sources=[ConfidenceSource.from_dict(item) for item in json.loads(row["sources"])],
            calculated_at=row["calculated_at"],
        )

    @staticmethod
    async def list_user_ids(conn: aiosqlite.Connection) -> List[str]:
        async with conn.execute("SELECT user_id FROM enforcement_confidence ORDER BY user_id") as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
