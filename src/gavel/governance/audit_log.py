"""
Moderator audit log.

One entry per moderator action, never edited except to stamp a reversal.
Whether an action is restrictive or reversible comes from the permission
matrix, not the caller.
"""

from __future__ import annotations

import uuid
from typing import List

from gavel.database.database import Database
from gavel.datatypes.audit_datatypes import ModerationAuditEntry, ModeratorActionType
from gavel.governance.errors import InvariantViolation, NotFoundError
from gavel.governance.permissions import permission_for
from gavel.repositories.audit_repo import AuditLogRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, now_ts

logger = get_logger("audit_log")


class AuditLog:
    def __init__(self, db: Database, clock: Clock = now_ts) -> None:
        self.db = db
        self.clock = clock

    async def record(
        self,
        actor_id: str,
        actor_level: int,
        target_user_id: str,
        action_type: ModeratorActionType,
    ) -> ModerationAuditEntry:
        permission = permission_for(action_type)
        entry = ModerationAuditEntry(
            entry_id=f"audit_{uuid.uuid4().hex}",
            actor_id=actor_id,
            actor_level=int(actor_level),
            target_user_id=target_user_id,
            action_type=action_type,
            reversible=permission.reversible,
            restrictive=permission.restrictive,
            created_at=self.clock(),
        )
        async with self.db.transaction() as conn:
            await AuditLogRepository.insert(conn, entry)
        logger.debug("[AUDIT] %s %s -> %s", actor_id, action_type, target_user_id)
        return entry

    async def get(self, entry_id: str) -> ModerationAuditEntry:
        async with self.db.read() as conn:
            entry = await AuditLogRepository.get(conn, entry_id)
        if entry is None:
            raise NotFoundError("Audit entry", entry_id)
        return entry

    async def reverse(self, entry_id: str, reversed_by: str) -> ModerationAuditEntry:
        """Stamp an entry as reversed. Each entry can be reversed once."""
        entry = await self.get(entry_id)
        if not entry.reversible:
            raise InvariantViolation(f"{entry.action_type} actions cannot be reversed")

        now = self.clock()
        async with self.db.transaction() as conn:
            if not await AuditLogRepository.mark_reversed(conn, entry_id, reversed_by, now):
                raise InvariantViolation(f"Audit entry {entry_id} is already reversed")

        entry.reversed_at = now
        entry.reversed_by = reversed_by
        logger.info("[AUDIT] %s reversed %s by %s", reversed_by, entry.action_type, entry.actor_id)
        return entry

    async def entries_for_moderator(self, moderator_id: str, since: int) -> List[ModerationAuditEntry]:
        async with self.db.read() as conn:
            return await AuditLogRepository.list_by_actor_since(conn, moderator_id, since)
