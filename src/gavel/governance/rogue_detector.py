"""
Rogue-moderator detection.

Looks at a moderator's last seven days of audit entries for five abuse
patterns. A hit records a detection (at most one per moderator per 24 hours),
opens a Critical governance-bypass case against the moderator and, when the
evidence is strong enough, strips the moderator back to the plain User role.
"""

from __future__ import annotations

import uuid
from collections import Counter
from typing import Iterable, Optional

from gavel.database.database import Database
from gavel.datatypes.audit_datatypes import (
    BehaviorAnalysis,
    ModerationAuditEntry,
    RogueModeratorDetection,
    RoguePattern,
)
from gavel.datatypes.case_datatypes import CasePriority, ReasonCode, SYSTEM_ACTOR
from gavel.datatypes.role_datatypes import Role, UserRoles
from gavel.governance.audit_log import AuditLog
from gavel.governance.case_manager import CaseManager
from gavel.repositories.audit_repo import RogueDetectionRepository
from gavel.repositories.roles_repo import RolesRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, DAY, days, hour_of_day, now_ts

logger = get_logger("rogue_detector")


ANALYSIS_WINDOW_DAYS = 7
DETECTION_COOLDOWN = DAY

REVERSAL_RATE_THRESHOLD = 0.30
REVERSAL_MIN_ACTIONS = 10
VOLUME_THRESHOLD = 500
TARGET_ACTIONS_THRESHOLD = 10
HOUR_CLUSTER_THRESHOLD = 0.80
HOUR_CLUSTER_MIN_ACTIONS = 10
RESTRICTIVE_RATE_THRESHOLD = 0.70
RESTRICTIVE_MIN_ACTIONS = 20

AUTO_SUSPEND_FALSE_POSITIVE_RATE = 0.5
AUTO_SUSPEND_PATTERN_COUNT = 3


def analyze_entries(moderator_id: str, entries: Iterable[ModerationAuditEntry]) -> BehaviorAnalysis:
    """Compute behavior statistics and the patterns they trigger."""
    entries = list(entries)
    total = len(entries)
    reversed_count = sum(1 for entry in entries if entry.is_reversed)
    restrictive_count = sum(1 for entry in entries if entry.restrictive)
    per_target = Counter(entry.target_user_id for entry in entries)
    per_hour = Counter(hour_of_day(entry.created_at) for entry in entries)

    analysis = BehaviorAnalysis(
        moderator_id=moderator_id,
        total_actions=total,
        reversed_actions=reversed_count,
        restrictive_actions=restrictive_count,
        max_actions_on_one_target=max(per_target.values(), default=0),
        max_hour_bucket_share=(max(per_hour.values()) / total) if total else 0.0,
    )

    if total > REVERSAL_MIN_ACTIONS and analysis.false_positive_rate > REVERSAL_RATE_THRESHOLD:
        analysis.patterns.append(RoguePattern.HIGH_REVERSAL_RATE)
    if total > VOLUME_THRESHOLD:
        analysis.patterns.append(RoguePattern.EXCESSIVE_VOLUME)
    if analysis.max_actions_on_one_target > TARGET_ACTIONS_THRESHOLD:
        analysis.patterns.append(RoguePattern.TARGETED_HARASSMENT)
    if total > HOUR_CLUSTER_MIN_ACTIONS and analysis.max_hour_bucket_share > HOUR_CLUSTER_THRESHOLD:
        analysis.patterns.append(RoguePattern.TIME_CLUSTERING)
    if total > RESTRICTIVE_MIN_ACTIONS and restrictive_count / total > RESTRICTIVE_RATE_THRESHOLD:
        analysis.patterns.append(RoguePattern.RESTRICTIVE_BIAS)

    return analysis


def should_auto_suspend(analysis: BehaviorAnalysis) -> bool:
    return (
        analysis.false_positive_rate > AUTO_SUSPEND_FALSE_POSITIVE_RATE
        or len(analysis.patterns) >= AUTO_SUSPEND_PATTERN_COUNT
    )


class RogueModeratorDetector:
    def __init__(
        self,
        db: Database,
        audit_log: AuditLog,
        case_manager: CaseManager,
        clock: Clock = now_ts,
    ) -> None:
        self.db = db
        self.audit_log = audit_log
        self.case_manager = case_manager
        self.clock = clock

    async def analyze_behavior(self, moderator_id: str) -> BehaviorAnalysis:
        since = self.clock() - days(ANALYSIS_WINDOW_DAYS)
        entries = await self.audit_log.entries_for_moderator(moderator_id, since)
        return analyze_entries(moderator_id, entries)

    async def _recent_detection(self, moderator_id: str, now: int) -> Optional[RogueModeratorDetection]:
        async with self.db.read() as conn:
            latest = await RogueDetectionRepository.latest_for_moderator(conn, moderator_id)
        if latest is not None and now - latest.detected_at < DETECTION_COOLDOWN:
            return latest
        return None

    async def analyze_moderator_behavior(self, moderator_id: str) -> Optional[RogueModeratorDetection]:
        """
        Analyze one moderator and act on any detected pattern.

        Returns:
            The new detection, or None if nothing fired or a detection was
            already recorded in the last 24 hours.
        """
        analysis = await self.analyze_behavior(moderator_id)
        if not analysis.patterns:
            return None

        now = self.clock()
        if await self._recent_detection(moderator_id, now) is not None:
            logger.debug("[ROGUE] %s already flagged in the last 24h; skipping", moderator_id)
            return None

        auto_suspend = should_auto_suspend(analysis)
        detection = RogueModeratorDetection(
            detection_id=f"rogue_{uuid.uuid4().hex}",
            moderator_id=moderator_id,
            patterns=list(analysis.patterns),
            false_positive_rate=analysis.false_positive_rate,
            total_actions=analysis.total_actions,
            auto_suspended=auto_suspend,
            detected_at=now,
        )
        reason = "rogue_detection:" + ",".join(pattern.value for pattern in analysis.patterns)

        # The detection row holds the cooldown slot before any case is opened.
        async with self.db.transaction() as conn:
            latest = await RogueDetectionRepository.latest_for_moderator(conn, moderator_id)
            if latest is not None and now - latest.detected_at < DETECTION_COOLDOWN:
                logger.debug("[ROGUE] %s was flagged concurrently; skipping", moderator_id)
                return None
            await RogueDetectionRepository.insert(conn, detection)

        try:
            case_id = await self.case_manager.create_case(
                moderator_id,
                [ReasonCode.GOVERNANCE_BYPASS],
                SYSTEM_ACTOR,
                priority=CasePriority.CRITICAL,
                require_review=True,
            )
        except Exception:
            async with self.db.transaction() as conn:
                await RogueDetectionRepository.delete(conn, detection.detection_id)
            raise

        detection.case_id = case_id
        async with self.db.transaction() as conn:
            await RogueDetectionRepository.set_case_id(conn, detection.detection_id, case_id)
            if auto_suspend:
                await RolesRepository.upsert(
                    conn,
                    UserRoles(
                        user_id=moderator_id,
                        roles=frozenset({Role.USER}),
                        granted_by=SYSTEM_ACTOR,
                        granted_at=now,
                        suspended_at=now,
                        suspension_reason=reason,
                        suspension_case_id=case_id,
                    ),
                )

        logger.warning(
            "[ROGUE] %s flagged: patterns=%s fpr=%.2f actions=%d auto_suspended=%s case=%s",
            moderator_id,
            [pattern.value for pattern in analysis.patterns],
            analysis.false_positive_rate,
            analysis.total_actions,
            auto_suspend,
            case_id,
        )
        return detection

    async def latest_detection(self, moderator_id: str) -> Optional[RogueModeratorDetection]:
        async with self.db.read() as conn:
            return await RogueDetectionRepository.latest_for_moderator(conn, moderator_id)
