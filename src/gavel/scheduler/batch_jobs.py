"""
Batch jobs over the user and moderator populations.

Items are processed in fixed-size batches: concurrently within a batch,
batches one after another with a short pause between them. A failing item is
logged and counted; it never stops the sweep. Both jobs only recompute and
overwrite, so rerunning them is safe.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence

from gavel.configuration.batch_settings import BatchJobSettings
from gavel.datatypes.audit_datatypes import RogueModeratorDetection
from gavel.engine import GovernanceEngine
from gavel.repositories.case_repo import CaseRepository
from gavel.repositories.confidence_repo import ConfidenceRepository
from gavel.repositories.restriction_repo import RestrictionRepository
from gavel.repositories.roles_repo import RolesRepository
from gavel.util.logger import get_logger

logger = get_logger("batch_jobs")


@dataclass(slots=True)
class BatchReport:
    processed: int = 0
    failed: int = 0
    results: List[Any] = field(default_factory=list)


def chunked(items: Sequence[str], size: int) -> List[Sequence[str]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_in_batches(
    label: str,
    items: Iterable[str],
    worker: Callable[[str], Awaitable[Any]],
    settings: BatchJobSettings,
) -> BatchReport:
    """Run ``worker`` over ``items`` batch by batch."""
    population = list(dict.fromkeys(items))
    report = BatchReport()
    batches = chunked(population, settings.batch_size)

    for index, batch in enumerate(batches):
        outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                report.failed += 1
                logger.warning("[%s] Failed for %s: %s", label, item, outcome)
                continue
            report.processed += 1
            report.results.append(outcome)

        if index < len(batches) - 1 and settings.inter_batch_delay_seconds > 0:
            await asyncio.sleep(settings.inter_batch_delay_seconds)

    logger.info(
        "[%s] Finished: %d processed, %d failed over %d batch(es)",
        label,
        report.processed,
        report.failed,
        len(batches),
    )
    return report


async def signal_population(engine: GovernanceEngine) -> List[str]:
    """Every user with a stored score, a case, or a current restriction."""
    async with engine.db.read() as conn:
        scored = await ConfidenceRepository.list_user_ids(conn)
        subjects = await CaseRepository.list_subjects_with_cases(conn)
        restricted = await RestrictionRepository.list_restricted_user_ids(conn)
    return sorted(set(scored) | set(subjects) | set(restricted))


async def rebuild_signals(
    engine: GovernanceEngine,
    settings: BatchJobSettings,
    user_ids: Optional[Iterable[str]] = None,
) -> BatchReport:
    """Recompute enforcement confidence for ``user_ids`` (default: the whole population)."""
    population = list(user_ids) if user_ids is not None else await signal_population(engine)
    return await run_in_batches("SIGNAL REBUILD", population, engine.calculate_confidence, settings)


async def sweep_moderators(engine: GovernanceEngine, settings: BatchJobSettings) -> List[RogueModeratorDetection]:
    """Run rogue detection over every moderator; returns the new detections."""
    async with engine.db.read() as conn:
        moderators = await RolesRepository.list_moderator_ids(conn)

    report = await run_in_batches("ROGUE SWEEP", moderators, engine.analyze_moderator_behavior, settings)
    return [detection for detection in report.results if detection is not None]
