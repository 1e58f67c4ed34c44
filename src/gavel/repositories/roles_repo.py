"""
Repository for the ``user_roles`` table.

Roles are stored as a JSON list of role values.
"""

from __future__ import annotations

import json
from typing import List, Optional

import aiosqlite

from gavel.datatypes.role_datatypes import Role, UserRoles


def _row_to_roles(row: aiosqlite.Row) -> UserRoles:
    return UserRoles(
        user_id=row["user_id"],
        roles=frozenset(Role(value) for value in json.loads(row["roles"])),
        granted_by=row["granted_by"],
        granted_at=row["granted_at"],
        suspended_at=row["suspended_at"],
        suspension_reason=row["suspension_reason"],
        suspension_case_id=row["suspension_case_id"],
    )


class RolesRepository:
    """CRUD for the user_roles table."""

    @staticmethod
    async def get(conn: aiosqlite.Connection, user_id: str) -> Optional[UserRoles]:
        async with conn.execute("SELECT * FROM user_roles WHERE user_id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
        return _row_to_roles(row) if row else None

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, record: UserRoles) -> None:
        """Insert or replace the whole role record for a user."""
        await conn.execute(
            """
            INSERT INTO user_roles (user_id, roles, granted_by, granted_at,
                                    suspended_at, suspension_reason, suspension_case_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                roles = excluded.roles,
                granted_by = excluded.granted_by,
                granted_at = excluded.granted_at,
                suspended_at = excluded.suspended_at,
                suspension_reason = excluded.suspension_reason,
                suspension_case_id = excluded.suspension_case_id
            """,
            (
                record.user_id,
                json.dumps(sorted(role.value for role in record.roles)),
                record.granted_by,
                record.granted_at,
                record.suspended_at,
                record.suspension_reason,
                record.suspension_case_id,
            ),
        )

    @staticmethod
    async def list_moderator_ids(conn: aiosqlite.Connection) -> List[str]:
        """Return every user holding at least one role above plain User."""
        async with conn.execute("SELECT * FROM user_roles ORDER BY user_id") as cursor:
            rows = await cursor.fetchall()
        return [
            record.user_id
            for record in (_row_to_roles(row) for row in rows)
            if record.moderator_level > 0
        ]
