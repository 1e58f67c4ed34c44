"""
Role hierarchy lookups and the static permission matrix.

Every moderator action type maps to the minimum moderator level allowed to
perform it, and to whether the action restricts a user and can be reversed.
The audit log and the rogue detector read ``restrictive``/``reversible`` from
here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

from gavel.database.database import Database
from gavel.datatypes.audit_datatypes import ModeratorActionType
from gavel.datatypes.role_datatypes import ModeratorLevel, Role, UserRoles
from gavel.governance.errors import AuthorizationError, InvariantViolation
from gavel.repositories.roles_repo import RolesRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, now_ts

logger = get_logger("permissions")


@dataclass(slots=True, frozen=True)
class Permission:
    min_level: ModeratorLevel
    restrictive: bool
    reversible: bool


ACTION_PERMISSIONS: Dict[ModeratorActionType, Permission] = {
    ModeratorActionType.FLAG_CONTENT: Permission(ModeratorLevel.COMMUNITY_MOD, restrictive=True, reversible=True),
    ModeratorActionType.APPLY_VISIBILITY_RESTRICTION: Permission(ModeratorLevel.COMMUNITY_MOD, restrictive=True, reversible=True),
    ModeratorActionType.APPLY_POSTING_FREEZE: Permission(ModeratorLevel.TRUSTED_MOD, restrictive=True, reversible=True),
    ModeratorActionType.FULL_ENFORCEMENT: Permission(ModeratorLevel.TRUSTED_MOD, restrictive=True, reversible=True),
    ModeratorActionType.LIFT_RESTRICTION: Permission(ModeratorLevel.TRUSTED_MOD, restrictive=False, reversible=True),
    ModeratorActionType.ASSIGN_CASE: Permission(ModeratorLevel.TRUSTED_MOD, restrictive=False, reversible=True),
    ModeratorActionType.ESCALATE_CASE: Permission(ModeratorLevel.TRUSTED_MOD, restrictive=False, reversible=True),
    ModeratorActionType.RESOLVE_CASE: Permission(ModeratorLevel.ADMIN, restrictive=False, reversible=True),
    ModeratorActionType.SUBMIT_APPEAL: Permission(ModeratorLevel.USER, restrictive=False, reversible=False),
    ModeratorActionType.REVIEW_APPEAL: Permission(ModeratorLevel.ADMIN, restrictive=False, reversible=False),
    ModeratorActionType.REQUEST_SUSPENSION: Permission(ModeratorLevel.ADMIN, restrictive=True, reversible=True),
    ModeratorActionType.APPROVE_SUSPENSION: Permission(ModeratorLevel.ADMIN, restrictive=True, reversible=False),
    ModeratorActionType.EXECUTE_SUSPENSION: Permission(ModeratorLevel.ADMIN, restrictive=True, reversible=False),
    ModeratorActionType.ASSIGN_ROLES: Permission(ModeratorLevel.ADMIN, restrictive=False, reversible=True),
}


def permission_for(action_type: ModeratorActionType) -> Permission:
    return ACTION_PERMISSIONS[action_type]


def has_level(actual: int, required: int) -> bool:
    return int(actual) >= int(required)


class PermissionService:
    """Reads role records and enforces minimum moderator levels.

    Users without a stored record hold the plain User role.
    """

    def __init__(self, db: Database, clock: Clock = now_ts) -> None:
        self.db = db
        self.clock = clock

    async def get_user_roles(self, user_id: str) -> UserRoles:
        async with self.db.read() as conn:
            record = await RolesRepository.get(conn, user_id)
        return record or UserRoles(user_id=user_id)

    async def get_moderator_level(self, user_id: str) -> ModeratorLevel:
        record = await self.get_user_roles(user_id)
        return record.moderator_level

    async def require_level(self, actor_id: str, required: ModeratorLevel, action: str = "") -> ModeratorLevel:
        """Return the actor's level, or raise AuthorizationError if it is below ``required``."""
        level = await self.get_moderator_level(actor_id)
        if not has_level(level, required):
            logger.info("[PERMISSIONS] Denied %s to %s (level %d < %d)", action or "action", actor_id, level, required)
            raise AuthorizationError(actor_id, required, level, action)
        return level

    async def require_action(self, actor_id: str, action_type: ModeratorActionType) -> ModeratorLevel:
        return await self.require_level(actor_id, permission_for(action_type).min_level, action_type.value)

    async def assign_roles(self, target_user_id: str, roles: Iterable[Role], granted_by: str) -> UserRoles:
        """Replace a user's roles. Only admins may change roles.

        Any previous moderator-suspension stamp is cleared since the roles were
        deliberately re-granted.
        """
        await self.require_level(granted_by, ModeratorLevel.ADMIN, "assign_roles")

        role_set = frozenset(roles) or frozenset({Role.USER})
        if not all(isinstance(role, Role) for role in role_set):
            raise InvariantViolation(f"Unknown role in {sorted(map(str, role_set))}")

        record = UserRoles(
            user_id=target_user_id,
            roles=role_set,
            granted_by=granted_by,
            granted_at=self.clock(),
        )
        async with self.db.transaction() as conn:
            await RolesRepository.upsert(conn, record)

        logger.info(
            "[PERMISSIONS] %s set roles of %s to %s",
            granted_by,
            target_user_id,
            ", ".join(sorted(role.value for role in role_set)),
        )
        return record
