"""
Per-moderator, per-action rate limiting over fixed windows.

A window opens on the first recorded action and lasts ``window_minutes``.
Once it has lapsed the next check treats the counter as fresh and the next
record opens a new window. Checks fail open: if the counter cannot be read
the action is allowed and the failure is logged.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional

from gavel.database.database import Database
from gavel.datatypes.audit_datatypes import ModeratorActionType, RateLimitResult, RateLimitRule
from gavel.repositories.rate_limit_repo import RateLimitRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, minutes_until, now_ts

logger = get_logger("rate_limiter")


DEFAULT_RATE_LIMITS: Dict[ModeratorActionType, RateLimitRule] = {
    ModeratorActionType.FLAG_CONTENT: RateLimitRule(limit=50, window_minutes=60),
    ModeratorActionType.APPLY_VISIBILITY_RESTRICTION: RateLimitRule(limit=10, window_minutes=60),
    ModeratorActionType.APPLY_POSTING_FREEZE: RateLimitRule(limit=10, window_minutes=60),
    ModeratorActionType.FULL_ENFORCEMENT: RateLimitRule(limit=5, window_minutes=60),
    ModeratorActionType.LIFT_RESTRICTION: RateLimitRule(limit=20, window_minutes=60),
    ModeratorActionType.ASSIGN_CASE: RateLimitRule(limit=100, window_minutes=60),
    ModeratorActionType.ESCALATE_CASE: RateLimitRule(limit=30, window_minutes=60),
    ModeratorActionType.RESOLVE_CASE: RateLimitRule(limit=30, window_minutes=60),
    ModeratorActionType.SUBMIT_APPEAL: RateLimitRule(limit=10, window_minutes=24 * 60),
    ModeratorActionType.REVIEW_APPEAL: RateLimitRule(limit=30, window_minutes=60),
    ModeratorActionType.REQUEST_SUSPENSION: RateLimitRule(limit=5, window_minutes=24 * 60),
    ModeratorActionType.APPROVE_SUSPENSION: RateLimitRule(limit=5, window_minutes=24 * 60),
    ModeratorActionType.EXECUTE_SUSPENSION: RateLimitRule(limit=5, window_minutes=24 * 60),
    ModeratorActionType.ASSIGN_ROLES: RateLimitRule(limit=5, window_minutes=60),
}


def build_rules(overrides: Optional[Mapping[str, Mapping[str, int]]] = None) -> Dict[ModeratorActionType, RateLimitRule]:
    """Merge ``app_config.rate_limits`` style overrides onto the defaults.

    Unknown action names and non-positive values are ignored.
    """
    rules = dict(DEFAULT_RATE_LIMITS)
    for action_name, entry in (overrides or {}).items():
        try:
            action_type = ModeratorActionType(action_name)
        except ValueError:
            logger.warning("[RATE LIMIT] Ignoring override for unknown action '%s'", action_name)
            continue
        limit = int(entry.get("limit", 0))
        window = int(entry.get("window_minutes", 0))
        if limit <= 0 or window <= 0:
            logger.warning("[RATE LIMIT] Ignoring non-positive override for '%s'", action_name)
            continue
        rules[action_type] = RateLimitRule(limit=limit, window_minutes=window)
    return rules


class RateLimiter:
    def __init__(
        self,
        db: Database,
        rules: Optional[Mapping[ModeratorActionType, RateLimitRule]] = None,
        clock: Clock = now_ts,
    ) -> None:
        self.db = db
        self.rules: Dict[ModeratorActionType, RateLimitRule] = dict(rules) if rules else dict(DEFAULT_RATE_LIMITS)
        self.clock = clock

    def rule_for(self, action_type: ModeratorActionType) -> RateLimitRule:
        return self.rules.get(action_type) or DEFAULT_RATE_LIMITS[action_type]

    async def check(self, moderator_id: str, action_type: ModeratorActionType) -> RateLimitResult:
        """Return whether ``moderator_id`` may perform ``action_type`` now."""
        rule = self.rule_for(action_type)
        try:
            async with self.db.read() as conn:
                record = await RateLimitRepository.get(conn, moderator_id, action_type)
        except Exception as exc:
            logger.error(
                "[RATE LIMIT] Check failed for %s/%s, allowing: %s", moderator_id, action_type, exc
            )
            return RateLimitResult(allowed=True, remaining=rule.limit)

        now = self.clock()
        if record is None or now >= record.window_end:
            return RateLimitResult(allowed=True, remaining=rule.limit)

        reset_in = minutes_until(record.window_end, now)
        if record.count >= rule.limit:
            logger.info(
                "[RATE LIMIT] %s hit %s limit (%d/%d), resets in %d min",
                moderator_id,
                action_type,
                record.count,
                rule.limit,
                reset_in,
            )
            return RateLimitResult(allowed=False, remaining=0, reset_in_minutes=reset_in)

        return RateLimitResult(allowed=True, remaining=rule.limit - record.count, reset_in_minutes=reset_in)

    async def record(self, moderator_id: str, action_type: ModeratorActionType) -> None:
        """Count one action, opening a new window if the previous one lapsed."""
        rule = self.rule_for(action_type)
        now = self.clock()
        async with self.db.transaction() as conn:
            if not await RateLimitRepository.increment_in_window(conn, moderator_id, action_type, now):
                await RateLimitRepository.open_window(
                    conn, moderator_id, action_type, now, now + rule.window_seconds
                )
