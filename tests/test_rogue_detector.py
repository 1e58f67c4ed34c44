"""Tests for rogue-moderator detection."""

from unittest.mock import AsyncMock, patch

import pytest

from gavel.datatypes.audit_datatypes import ModerationAuditEntry, ModeratorActionType, RoguePattern
from gavel.datatypes.case_datatypes import CasePriority, ReasonCode
from gavel.datatypes.role_datatypes import ModeratorLevel, Role
from gavel.governance.rogue_detector import analyze_entries, should_auto_suspend
from gavel.util.time_utils import DAY, HOUR, days

from conftest import START_TS, grant_roles


def _entry(index, target="t0", created_at=START_TS, reversed_at=None, restrictive=True):
    return ModerationAuditEntry(
        entry_id=f"audit_{index}",
        actor_id="mod",
        actor_level=2,
        target_user_id=target,
        action_type=ModeratorActionType.FLAG_CONTENT if restrictive else ModeratorActionType.ASSIGN_CASE,
        reversible=True,
        restrictive=restrictive,
        created_at=created_at,
        reversed_at=reversed_at,
    )


def _spread(count, reversed_count=0, restrictive=True):
    """Entries over distinct targets and hours so only the pattern under test fires."""
    return [
        _entry(
            index,
            target=f"t{index}",
            created_at=START_TS + index * HOUR,
            reversed_at=START_TS + DAY if index < reversed_count else None,
            restrictive=restrictive,
        )
        for index in range(count)
    ]


class TestAnalyzeEntries:
    """Tests for the pattern rules."""

    def test_no_entries(self):
        analysis = analyze_entries("mod", [])

        assert analysis.total_actions == 0
        assert analysis.false_positive_rate == 0.0
        assert analysis.patterns == []

    def test_high_reversal_rate(self):
        analysis = analyze_entries("mod", _spread(20, reversed_count=7, restrictive=False))

        assert analysis.false_positive_rate == pytest.approx(0.35)
        assert analysis.patterns == [RoguePattern.HIGH_REVERSAL_RATE]

    def test_reversal_rate_needs_more_than_ten_actions(self):
        analysis = analyze_entries("mod", _spread(10, reversed_count=9, restrictive=False))

        assert RoguePattern.HIGH_REVERSAL_RATE not in analysis.patterns

    def test_excessive_volume(self):
        entries = [
            _entry(index, target=f"t{index}", created_at=START_TS + (index % 24) * HOUR, restrictive=False)
            for index in range(501)
        ]

        analysis = analyze_entries("mod", entries)

        assert analysis.patterns == [RoguePattern.EXCESSIVE_VOLUME]

    def test_targeted_harassment(self):
        entries = _spread(12, restrictive=False)
        entries += [_entry(100 + index, target="victim", created_at=START_TS + index * HOUR, restrictive=False) for index in range(11)]

        analysis = analyze_entries("mod", entries)

        assert analysis.max_actions_on_one_target == 11
        assert analysis.patterns == [RoguePattern.TARGETED_HARASSMENT]

    def test_time_clustering(self):
        entries = [_entry(index, target=f"t{index}", created_at=START_TS, restrictive=False) for index in range(11)]

        analysis = analyze_entries("mod", entries)

        assert analysis.max_hour_bucket_share == 1.0
        assert analysis.patterns == [RoguePattern.TIME_CLUSTERING]

    def test_time_clustering_needs_more_than_ten_actions(self):
        entries = [_entry(index, target=f"t{index}", created_at=START_TS, restrictive=False) for index in range(10)]

        analysis = analyze_entries("mod", entries)

        assert analysis.max_hour_bucket_share == 1.0
        assert analysis.patterns == []

    def test_restrictive_bias(self):
        analysis = analyze_entries("mod", _spread(21))

        assert analysis.patterns == [RoguePattern.RESTRICTIVE_BIAS]

    def test_auto_suspend_rules(self):
        reversal_heavy = analyze_entries("mod", _spread(20, reversed_count=11, restrictive=False))
        mild = analyze_entries("mod", _spread(20, reversed_count=7, restrictive=False))

        assert should_auto_suspend(reversal_heavy) is True
        assert should_auto_suspend(mild) is False


class TestRogueModeratorDetector:
    """Tests for acting on detections."""

    async def _history(self, engine, moderator, total, reversed_count):
        """Record ``total`` actions by ``moderator``, the first ``reversed_count`` of them reversed."""
        entries = []
        for index in range(total):
            entry = await engine.audit_log.record(
                moderator, ModeratorLevel.TRUSTED_MOD, f"target{index % 5}", ModeratorActionType.FLAG_CONTENT
            )
            entries.append(entry)
        for entry in entries[:reversed_count]:
            await engine.audit_log.reverse(entry.entry_id, "admin1")
        return entries

    @pytest.mark.asyncio
    async def test_quiet_moderator_is_not_flagged(self, engine, staff):
        assert await engine.analyze_moderator_behavior(staff["trusted"]) is None

    @pytest.mark.asyncio
    async def test_reversal_heavy_moderator_is_suspended(self, engine, staff, clock):
        await self._history(engine, "tm1", total=20, reversed_count=15)

        detection = await engine.analyze_moderator_behavior("tm1")

        assert detection is not None
        assert RoguePattern.HIGH_REVERSAL_RATE in detection.patterns
        assert detection.false_positive_rate == pytest.approx(0.75)
        assert detection.total_actions == 20
        assert detection.auto_suspended is True

        roles = await engine.get_user_roles("tm1")
        assert roles.roles == frozenset({Role.USER})
        assert roles.is_suspended is True
        assert roles.suspension_case_id == detection.case_id

        case = await engine.get_case(detection.case_id)
        assert case.subject_user_id == "tm1"
        assert case.priority == CasePriority.CRITICAL
        assert ReasonCode.GOVERNANCE_BYPASS in case.reason_codes
        queue = await engine.list_review_queue()
        assert detection.case_id in [item.case_id for item in queue]

    @pytest.mark.asyncio
    async def test_detection_without_auto_suspend_keeps_roles(self, db, engine, clock):
        await grant_roles(db, "mod", Role.COMMUNITY_MOD)
        # all in one hour bucket, nothing reversed
        await self._history(engine, "mod", total=12, reversed_count=0)

        detection = await engine.analyze_moderator_behavior("mod")

        assert detection.patterns == [RoguePattern.TIME_CLUSTERING]
        assert detection.auto_suspended is False
        assert (await engine.get_user_roles("mod")).roles == frozenset({Role.COMMUNITY_MOD})

    @pytest.mark.asyncio
    async def test_one_detection_per_day(self, engine, staff, clock):
        await self._history(engine, "tm1", total=20, reversed_count=15)
        first = await engine.analyze_moderator_behavior("tm1")

        clock.advance(23 * HOUR)
        assert await engine.analyze_moderator_behavior("tm1") is None

        clock.advance(2 * HOUR)
        second = await engine.analyze_moderator_behavior("tm1")
        assert second is not None
        assert second.detection_id != first.detection_id
        # still the same open governance case
        assert second.case_id == first.case_id
        assert (await engine.rogue_detector.latest_detection("tm1")).detection_id == second.detection_id

    @pytest.mark.asyncio
    async def test_actions_older_than_a_week_are_ignored(self, engine, staff, clock):
        await self._history(engine, "tm1", total=20, reversed_count=15)
        clock.advance(days(7) + 1)

        analysis = await engine.get_behavior_analysis("tm1")

        assert analysis.total_actions == 0
        assert await engine.analyze_moderator_behavior("tm1") is None

    @pytest.mark.asyncio
    async def test_handful_of_actions_in_one_sitting_is_not_flagged(self, db, engine, clock):
        await grant_roles(db, "mod", Role.COMMUNITY_MOD)
        await self._history(engine, "mod", total=3, reversed_count=0)

        assert await engine.analyze_moderator_behavior("mod") is None
        assert await engine.list_cases(subject_user_id="mod") == []

    @pytest.mark.asyncio
    async def test_concurrent_detection_opens_no_case(self, engine, staff):
        """A run that loses the cooldown race leaves the governance case untouched."""
        await self._history(engine, "tm1", total=20, reversed_count=15)
        first = await engine.analyze_moderator_behavior("tm1")
        history_before = (await engine.get_case(first.case_id)).history

        detector = engine.rogue_detector
        with patch.object(detector, "_recent_detection", AsyncMock(return_value=None)):
            assert await detector.analyze_moderator_behavior("tm1") is None

        assert len((await engine.get_case(first.case_id)).history) == len(history_before)
        assert len(await engine.list_cases(subject_user_id="tm1")) == 1
        assert (await detector.latest_detection("tm1")).detection_id == first.detection_id

    @pytest.mark.asyncio
    async def test_case_failure_releases_the_cooldown(self, engine, staff):
        await self._history(engine, "tm1", total=20, reversed_count=15)
        detector = engine.rogue_detector

        with patch.object(detector.case_manager, "create_case", AsyncMock(side_effect=RuntimeError("disk I/O error"))):
            with pytest.raises(RuntimeError):
                await detector.analyze_moderator_behavior("tm1")

        assert await detector.latest_detection("tm1") is None
        assert (await engine.get_user_roles("tm1")).roles != frozenset({Role.USER})
        assert await detector.analyze_moderator_behavior("tm1") is not None
