"""Tests for the guarded operations on the governance engine."""

import pytest

from gavel.datatypes.appeal_datatypes import AppealDecision
from gavel.datatypes.audit_datatypes import ModeratorActionType
from gavel.datatypes.case_datatypes import CaseResolution, ReasonCode, ResolutionOutcome
from gavel.datatypes.enforcement_datatypes import VisibilityTier
from gavel.datatypes.role_datatypes import ModeratorLevel, Role
from gavel.governance.errors import AuthorizationError, InvariantViolation, RateLimitExceeded

from conftest import START_TS


async def _audit(engine, moderator):
    return await engine.audit_log.entries_for_moderator(moderator, START_TS)


class TestGuard:
    """Rate limit, permission, action, then bookkeeping."""

    @pytest.mark.asyncio
    async def test_successful_action_is_audited(self, engine, staff):
        restriction = await engine.apply_visibility_restriction("u1", staff["community"], VisibilityTier.LOW, 24)

        assert restriction.tier == VisibilityTier.LOW
        assert restriction.expires_at == restriction.applied_at + 24 * 3600

        entries = await _audit(engine, staff["community"])
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action_type == ModeratorActionType.APPLY_VISIBILITY_RESTRICTION
        assert entry.actor_level == ModeratorLevel.COMMUNITY_MOD
        assert entry.target_user_id == "u1"
        assert entry.restrictive is True
        assert entry.reversible is True

        limit = await engine.check_rate_limit(staff["community"], ModeratorActionType.APPLY_VISIBILITY_RESTRICTION)
        assert limit.remaining == 9

    @pytest.mark.asyncio
    async def test_unauthorized_action_leaves_no_trace(self, engine, staff):
        with pytest.raises(AuthorizationError) as excinfo:
            await engine.freeze_posting("u1", staff["community"])

        assert excinfo.value.required_level == ModeratorLevel.TRUSTED_MOD
        assert excinfo.value.actual_level == ModeratorLevel.COMMUNITY_MOD
        assert await engine.is_posting_allowed("u1") is True
        assert await _audit(engine, staff["community"]) == []
        limit = await engine.check_rate_limit(staff["community"], ModeratorActionType.APPLY_POSTING_FREEZE)
        assert limit.remaining == 10

    @pytest.mark.asyncio
    async def test_rate_limit_is_enforced(self, engine, staff):
        for _ in range(10):
            await engine.apply_visibility_restriction("u1", staff["community"], VisibilityTier.LOW)

        with pytest.raises(RateLimitExceeded) as excinfo:
            await engine.apply_visibility_restriction("u2", staff["community"], VisibilityTier.LOW)

        assert excinfo.value.retry_after_minutes == 60
        assert await engine.get_visibility_restriction("u2") is None
        assert len(await _audit(engine, staff["community"])) == 10

    @pytest.mark.asyncio
    async def test_rate_limit_is_checked_before_permission(self, engine):
        for _ in range(10):
            await engine.record_rate_limit("nobody", ModeratorActionType.APPLY_VISIBILITY_RESTRICTION)

        with pytest.raises(RateLimitExceeded):
            await engine.apply_visibility_restriction("u1", "nobody", VisibilityTier.LOW)

    @pytest.mark.asyncio
    async def test_failed_operation_is_not_audited(self, engine, staff):
        case_id = await engine.create_case("u1", [ReasonCode.HARASSMENT])
        await engine.resolve_case(case_id, "admin1", CaseResolution(ResolutionOutcome.WARNING, "confirmed"))
        appeal_id = await engine.submit_appeal(case_id, "u1", "please")
        await engine.review_appeal(appeal_id, "admin2", AppealDecision.UPHELD, "")

        with pytest.raises(InvariantViolation):
            await engine.review_appeal(appeal_id, "admin2", AppealDecision.OVERTURNED, "")

        reviews = [
            entry for entry in await _audit(engine, "admin2")
            if entry.action_type == ModeratorActionType.REVIEW_APPEAL
        ]
        assert len(reviews) == 1


class TestCases:
    """Case operations through the facade."""

    @pytest.mark.asyncio
    async def test_system_cases_are_not_audited(self, engine):
        case_id = await engine.create_case("u1", [ReasonCode.SPAM])

        assert (await engine.get_case(case_id)).subject_user_id == "u1"
        assert await _audit(engine, "AUTO") == []

    @pytest.mark.asyncio
    async def test_moderator_case_counts_as_flag(self, engine, staff):
        case_id = await engine.flag_user("u1", [ReasonCode.SPAM], staff["community"])

        entries = await _audit(engine, staff["community"])
        assert [entry.action_type for entry in entries] == [ModeratorActionType.FLAG_CONTENT]
        assert (await engine.get_case(case_id)).subject_user_id == "u1"

    @pytest.mark.asyncio
    async def test_plain_user_cannot_open_case(self, engine):
        with pytest.raises(AuthorizationError):
            await engine.create_case("u1", [ReasonCode.SPAM], "u9")

        assert await engine.list_cases(subject_user_id="u1") == []

    @pytest.mark.asyncio
    async def test_assign_and_escalate(self, engine, staff):
        case_id = await engine.create_case("u1", [ReasonCode.HATE_SPEECH])

        await engine.assign_case(case_id, staff["trusted"], staff["trusted"])
        await engine.escalate_case(case_id, staff["trusted"], "needs an admin")

        actions = [entry.action_type for entry in await _audit(engine, staff["trusted"])]
        assert actions == [ModeratorActionType.ASSIGN_CASE, ModeratorActionType.ESCALATE_CASE]


class TestRestrictions:
    """Lifting restrictions through the facade."""

    @pytest.mark.asyncio
    async def test_lift_restrictions(self, engine, staff):
        await engine.freeze_posting("u1", staff["trusted"], 12)

        assert await engine.lift_restrictions("u1", staff["trusted"], "appeal granted") is True
        assert await engine.is_posting_allowed("u1") is True
        assert await engine.lift_restrictions("u1", staff["trusted"]) is False

        entries = await _audit(engine, staff["trusted"])
        lift = entries[-1]
        assert lift.action_type == ModeratorActionType.LIFT_RESTRICTION
        assert lift.restrictive is False


class TestAppeals:
    """Appeal submission limits."""

    @pytest.mark.asyncio
    async def test_submit_appeal_is_rate_limited(self, engine, staff):
        case_id = await engine.create_case("u1", [ReasonCode.SPAM])
        await engine.resolve_case(case_id, "admin1", CaseResolution(ResolutionOutcome.WARNING, "confirmed"))
        for _ in range(10):
            await engine.record_rate_limit("u1", ModeratorActionType.SUBMIT_APPEAL)

        with pytest.raises(RateLimitExceeded) as excinfo:
            await engine.submit_appeal(case_id, "u1", "please")

        assert excinfo.value.retry_after_minutes == 24 * 60
        assert await engine.list_appeals(case_id) == []

    @pytest.mark.asyncio
    async def test_submit_appeal_counts_against_limit(self, engine, staff):
        case_id = await engine.create_case("u1", [ReasonCode.SPAM])
        await engine.resolve_case(case_id, "admin1", CaseResolution(ResolutionOutcome.WARNING, "confirmed"))

        await engine.submit_appeal(case_id, "u1", "please")

        limit = await engine.check_rate_limit("u1", ModeratorActionType.SUBMIT_APPEAL)
        assert limit.remaining == 9
        # appeals are not moderator actions
        assert await _audit(engine, "u1") == []


class TestRolesAndReversal:
    """Role changes and audit reversals."""

    @pytest.mark.asyncio
    async def test_admin_assigns_roles(self, engine, staff):
        record = await engine.assign_roles("newmod", [Role.COMMUNITY_MOD], "admin1")

        assert record.granted_by == "admin1"
        assert await engine.get_moderator_level("newmod") == ModeratorLevel.COMMUNITY_MOD
        entries = await _audit(engine, "admin1")
        assert entries[-1].action_type == ModeratorActionType.ASSIGN_ROLES

    @pytest.mark.asyncio
    async def test_trusted_mod_cannot_assign_roles(self, engine, staff):
        with pytest.raises(AuthorizationError):
            await engine.assign_roles("u1", [Role.ADMIN], staff["trusted"])

        assert await engine.get_moderator_level("u1") == ModeratorLevel.USER

    @pytest.mark.asyncio
    async def test_reverse_action(self, engine, staff, clock):
        await engine.apply_visibility_restriction("u1", staff["community"], VisibilityTier.LOW)
        entry = (await _audit(engine, staff["community"]))[0]
        clock.advance(300)

        with pytest.raises(AuthorizationError):
            await engine.reverse_action(entry.entry_id, staff["trusted"])

        reversed_entry = await engine.reverse_action(entry.entry_id, "admin1")
        assert reversed_entry.reversed_by == "admin1"
        assert reversed_entry.reversed_at == clock()
        assert (await engine.audit_log.get(entry.entry_id)).is_reversed

        with pytest.raises(InvariantViolation):
            await engine.reverse_action(entry.entry_id, "admin2")

    @pytest.mark.asyncio
    async def test_irreversible_action(self, engine, staff):
        approval_id = await engine.request_suspension_approval("u1", "admin1", "ban evasion")
        await engine.approve_suspension(approval_id, "admin2")
        approval_entry = (await _audit(engine, "admin2"))[-1]
        assert approval_entry.action_type == ModeratorActionType.APPROVE_SUSPENSION
        assert approval_entry.reversible is False

        with pytest.raises(InvariantViolation):
            await engine.reverse_action(approval_entry.entry_id, "admin1")
