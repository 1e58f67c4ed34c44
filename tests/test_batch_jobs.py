"""Tests for the batched signal rebuild and moderator sweep."""

from unittest.mock import AsyncMock, patch

import pytest

from gavel.configuration.batch_settings import BatchJobSettings
from gavel.datatypes.audit_datatypes import ModeratorActionType
from gavel.datatypes.case_datatypes import ReasonCode
from gavel.datatypes.enforcement_datatypes import VisibilityTier
from gavel.datatypes.role_datatypes import ModeratorLevel
from gavel.scheduler.batch_jobs import chunked, rebuild_signals, run_in_batches, signal_population, sweep_moderators

NO_DELAY = BatchJobSettings({"batch_size": 2, "inter_batch_delay_seconds": 0})


def test_chunked():
    assert chunked(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert chunked([], 3) == []
    assert chunked(["a", "b"], 0) == [["a"], ["b"]]


class TestBatchJobSettings:
    """Tests for the typed accessors."""

    def test_defaults(self):
        settings = BatchJobSettings()

        assert settings.batch_size == 10
        assert settings.inter_batch_delay_seconds == 1.0
        assert settings.signal_rebuild_interval_seconds == 86400.0
        assert settings.rogue_sweep_interval_seconds == 3600.0

    def test_malformed_values_fall_back(self):
        settings = BatchJobSettings({"batch_size": "lots", "inter_batch_delay_seconds": -5})

        assert settings.batch_size == 10
        assert settings.inter_batch_delay_seconds == 0.0


class TestRunInBatches:
    """Tests for the batch runner."""

    @pytest.mark.asyncio
    async def test_failures_are_counted_not_raised(self):
        async def worker(item):
            if item == "bad":
                raise RuntimeError("boom")
            return item.upper()

        report = await run_in_batches("TEST", ["a", "bad", "b", "c"], worker, NO_DELAY)

        assert report.processed == 3
        assert report.failed == 1
        assert report.results == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_duplicates_run_once(self):
        worker = AsyncMock(return_value=None)

        report = await run_in_batches("TEST", ["a", "b", "a"], worker, NO_DELAY)

        assert report.processed == 2
        assert worker.await_count == 2

    @pytest.mark.asyncio
    async def test_pauses_between_batches_only(self):
        settings = BatchJobSettings({"batch_size": 2, "inter_batch_delay_seconds": 0.5})
        worker = AsyncMock(return_value=None)

        with patch("gavel.scheduler.batch_jobs.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await run_in_batches("TEST", ["a", "b", "c", "d", "e"], worker, settings)

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.5)


class TestRebuildSignals:
    """Tests for the confidence rebuild job."""

    @pytest.mark.asyncio
    async def test_population_covers_scored_cased_and_restricted_users(self, engine):
        await engine.calculate_confidence("scored")
        await engine.create_case("cased", [ReasonCode.SPAM])
        await engine.dispatcher.apply_visibility_restriction("restricted", VisibilityTier.LOW, "tm1")

        population = await signal_population(engine)

        assert {"scored", "cased", "restricted"} <= set(population)

    @pytest.mark.asyncio
    async def test_rebuild_recomputes_scores(self, engine, trust_profiles):
        trust_profiles.set("u1", ai_flags=2)

        report = await rebuild_signals(engine, NO_DELAY, ["u1", "u2"])

        assert report.processed == 2
        assert report.failed == 0
        scores = {confidence.user_id: confidence.score for confidence in report.results}
        assert scores["u1"] > scores["u2"]

    @pytest.mark.asyncio
    async def test_rebuild_survives_a_failing_user(self, engine):
        original = engine.calculate_confidence

        async def flaky(user_id):
            if user_id == "u2":
                raise RuntimeError("feed unavailable")
            return await original(user_id)

        engine.calculate_confidence = flaky
        report = await rebuild_signals(engine, NO_DELAY, ["u1", "u2", "u3"])

        assert report.processed == 2
        assert report.failed == 1


class TestSweepModerators:
    """Tests for the rogue-moderator sweep."""

    @pytest.mark.asyncio
    async def test_sweep_returns_new_detections(self, engine, staff):
        entries = []
        for index in range(20):
            entries.append(
                await engine.audit_log.record(
                    "tm1", ModeratorLevel.TRUSTED_MOD, f"target{index}", ModeratorActionType.FLAG_CONTENT
                )
            )
        for entry in entries[:15]:
            await engine.audit_log.reverse(entry.entry_id, "admin1")

        detections = await sweep_moderators(engine, NO_DELAY)

        assert [detection.moderator_id for detection in detections] == ["tm1"]
        assert await sweep_moderators(engine, NO_DELAY) == []
