"""
Enforcement confidence scoring.

Six signal families are each normalized to [0, 1] by their own rule and then
combined as a weighted average over the families that produced a non-zero
value. Families with no signal are left out of both the numerator and the
denominator, so a single strong signal is not diluted by absent ones.

The result depends only on the signal state at calculation time; recalculating
overwrites the stored record for the user.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from gavel.collaborators.interfaces import AnomalyFeed, ContentReportStore, TrustProfileReader
from gavel.database.database import Database
from gavel.datatypes.case_datatypes import CasePriority, ResolutionOutcome
from gavel.datatypes.confidence_datatypes import (
    ConfidenceSource,
    ConfidenceSourceType,
    EnforcementConfidence,
)
from gavel.datatypes.role_datatypes import ModeratorLevel
from gavel.repositories.audit_repo import AuditLogRepository
from gavel.repositories.case_repo import CaseRepository
from gavel.repositories.confidence_repo import ConfidenceRepository
from gavel.util.logger import get_logger
from gavel.util.time_utils import Clock, days, now_ts

logger = get_logger("confidence_engine")


SOURCE_WEIGHTS: Dict[ConfidenceSourceType, float] = {
    ConfidenceSourceType.AI_SCAN: 0.25,
    ConfidenceSourceType.TRUSTED_MOD_ACTION: 0.25,
    ConfidenceSourceType.COMMUNITY_FLAG: 0.15,
    ConfidenceSourceType.USER_REPORT: 0.15,
    ConfidenceSourceType.VIOLATION_HISTORY: 0.10,
    ConfidenceSourceType.ANOMALY_DETECTION: 0.10,
}

# Per-unit increments before capping at 1.0
AI_FLAG_STEP = 0.2
COMMUNITY_FLAG_STEP = 0.1
TRUSTED_MOD_ACTION_STEP = 0.25
UNIQUE_REPORTER_STEP = 0.1

# Severity of one confirmed violation, by the priority of the case it closed
VIOLATION_SEVERITY: Dict[CasePriority, float] = {
    CasePriority.LOW: 0.1,
    CasePriority.MEDIUM: 0.2,
    CasePriority.HIGH: 0.3,
    CasePriority.CRITICAL: 0.5,
}

SIGNAL_LOOKBACK_DAYS = 30


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def capped_count(count: int, step: float) -> float:
    return clamp(count * step)


def aggregate_score(sources: Iterable[ConfidenceSource]) -> float:
    """Weighted average of the contributing sources, clamped to [0, 1].

    Returns 0.0 when nothing contributed.
    """
    contributing = [source for source in sources if source.value > 0]
    total_weight = sum(source.weight for source in contributing)
    if total_weight <= 0:
        return 0.0
    weighted = sum(source.contribution for source in contributing)
    return clamp(weighted / total_weight)


class ConfidenceEngine:
    """
    Computes and stores a user's enforcement confidence.

    Args:
        db: Governance database (audit log, cases, stored scores)
        trust_profiles: Source of AI and community flag counts
        reports: Content-report store
        anomalies: Anomaly-detection feed
        clock: Current unix seconds
    """

    def __init__(
        self,
        db: Database,
        trust_profiles: TrustProfileReader,
        reports: ContentReportStore,
        anomalies: AnomalyFeed,
        clock: Clock = now_ts,
    ) -> None:
        self.db = db
        self.trust_profiles = trust_profiles
        self.reports = reports
        self.anomalies = anomalies
        self.clock = clock

    async def collect_signals(self, user_id: str) -> Dict[ConfidenceSourceType, float]:
        """Return every family's normalized value (including zeros)."""
        now = self.clock()
        since = now - days(SIGNAL_LOOKBACK_DAYS)

        flags = await self.trust_profiles.get_flags(user_id)
        reports = await self.reports.get_reports(user_id, since)
        anomalies = await self.anomalies.get_anomalies(user_id, since)

        async with self.db.read() as conn:
            mod_actions = await AuditLogRepository.list_by_target_since(
                conn, user_id, since, min_actor_level=ModeratorLevel.TRUSTED_MOD
            )
            resolved = await CaseRepository.list_resolved_for_subject(conn, user_id)

        trusted_actions = [entry for entry in mod_actions if entry.restrictive and not entry.is_reversed]
        unique_reporters = {report.reporter_id for report in reports if report.reporter_id != user_id}
        violation_severity = sum(
            VIOLATION_SEVERITY[case.priority]
            for case in resolved
            if case.resolution is not None and case.resolution.outcome is not ResolutionOutcome.NO_VIOLATION
        )
        anomaly_peak = max((clamp(anomaly.score) for anomaly in anomalies), default=0.0)

        return {
            ConfidenceSourceType.AI_SCAN: capped_count(flags.ai_flags, AI_FLAG_STEP),
            ConfidenceSourceType.TRUSTED_MOD_ACTION: capped_count(len(trusted_actions), TRUSTED_MOD_ACTION_STEP),
            ConfidenceSourceType.COMMUNITY_FLAG: capped_count(flags.community_flags, COMMUNITY_FLAG_STEP),
            ConfidenceSourceType.USER_REPORT: capped_count(len(unique_reporters), UNIQUE_REPORTER_STEP),
            ConfidenceSourceType.VIOLATION_HISTORY: clamp(violation_severity),
            ConfidenceSourceType.ANOMALY_DETECTION: anomaly_peak,
        }

    def build_sources(self, values: Dict[ConfidenceSourceType, float], timestamp: int) -> List[ConfidenceSource]:
        """Turn normalized values into the ordered list of contributing sources."""
        sources: List[ConfidenceSource] = []
        for source_type, weight in SOURCE_WEIGHTS.items():
            value = clamp(values.get(source_type, 0.0))
            if value <= 0:
                continue
            sources.append(
                ConfidenceSource(
                    type=source_type,
                    weight=weight,
                    value=value,
                    contribution=weight * value,
                    timestamp=timestamp,
                )
            )
        return sources

    async def calculate(self, user_id: str) -> EnforcementConfidence:
        """Recompute the user's confidence from current signals and overwrite the stored record."""
        now = self.clock()
        values = await self.collect_signals(user_id)
        sources = self.build_sources(values, now)
        confidence = EnforcementConfidence(
            user_id=user_id,
            score=aggregate_score(sources),
            sources=sources,
            calculated_at=now,
        )

        async with self.db.transaction() as conn:
            await ConfidenceRepository.upsert(conn, confidence)

        logger.debug(
            "[CONFIDENCE] %s scored %.3f from %d source(s)", user_id, confidence.score, len(sources)
        )
        return confidence

    async def get_stored(self, user_id: str) -> EnforcementConfidence | None:
        async with self.db.read() as conn:
            return await ConfidenceRepository.get(conn, user_id)
