"""
Moderator role hierarchy.

Four tiers, each implying a numeric moderator level:
User (0) < Community Mod (1) < Trusted Mod (2) < Admin (3).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import FrozenSet, Iterable, Optional


class ModeratorLevel(IntEnum):
    USER = 0
    COMMUNITY_MOD = 1
    TRUSTED_MOD = 2
    ADMIN = 3


class Role(Enum):
    """Role names a user can hold. The set is unordered; the effective level is the max."""

    USER = "user"
    COMMUNITY_MOD = "community_mod"
    TRUSTED_MOD = "trusted_mod"
    ADMIN = "admin"

    def __str__(self) -> str:
        return self.value

    @property
    def level(self) -> ModeratorLevel:
        return ROLE_LEVELS[self]


ROLE_LEVELS = {
    Role.USER: ModeratorLevel.USER,
    Role.COMMUNITY_MOD: ModeratorLevel.COMMUNITY_MOD,
    Role.TRUSTED_MOD: ModeratorLevel.TRUSTED_MOD,
    Role.ADMIN: ModeratorLevel.ADMIN,
}


def level_for_roles(roles: Iterable[Role]) -> ModeratorLevel:
    """Return the highest level implied by ``roles`` (USER for an empty set)."""
    return max((role.level for role in roles), default=ModeratorLevel.USER)


@dataclass(slots=True)
class UserRoles:
    """Role record for one user.

    Attributes:
        user_id: Owner of the record
        roles: Roles currently held
        granted_by: Admin who last changed the roles (None for defaults)
        granted_at: Unix seconds of the last change
        suspended_at: Set when the user was auto-suspended as a moderator
        suspension_reason: Why the moderator was suspended
        suspension_case_id: Case opened alongside the suspension
    """
    user_id: str
    roles: FrozenSet[Role] = field(default_factory=lambda: frozenset({Role.USER}))
    granted_by: Optional[str] = None
    granted_at: int = 0
    suspended_at: Optional[int] = None
    suspension_reason: Optional[str] = None
    suspension_case_id: Optional[str] = None

    @property
    def moderator_level(self) -> ModeratorLevel:
        return level_for_roles(self.roles)

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None
