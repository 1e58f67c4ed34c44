"""Tests for the moderation case lifecycle."""

import asyncio

import pytest

from gavel.datatypes.case_datatypes import (
    ActorType,
    CasePriority,
    CaseResolution,
    CaseStatus,
    ReasonCode,
    ResolutionOutcome,
)
from gavel.governance.case_manager import (
    CaseManager,
    can_transition,
    determine_priority,
    max_priority,
    requires_human_review,
    review_reason,
)
from gavel.governance.confidence_engine import ConfidenceEngine
from gavel.governance.errors import AuthorizationError, InvalidTransitionError, InvariantViolation, NotFoundError
from gavel.governance.permissions import PermissionService


@pytest.fixture
def case_manager(db, trust_profiles, reports, anomalies, clock):
    confidence = ConfidenceEngine(db, trust_profiles, reports, anomalies, clock)
    return CaseManager(db, confidence, PermissionService(db, clock), clock)


class TestPriorityRules:
    """Tests for priority and review routing."""

    def test_critical_reason_beats_low_confidence(self):
        assert determine_priority([ReasonCode.MINOR_SAFETY], 0.1) == CasePriority.CRITICAL

    def test_confidence_above_medium_threshold(self):
        assert determine_priority([ReasonCode.SPAM], 0.65) == CasePriority.MEDIUM

    def test_confidence_above_high_threshold_without_reasons(self):
        assert determine_priority([], 0.95) == CasePriority.HIGH

    def test_high_reason(self):
        assert determine_priority([ReasonCode.COORDINATED_ABUSE], 0.0) == CasePriority.HIGH

    def test_medium_reason(self):
        assert determine_priority([ReasonCode.PERSISTENT_VIOLATIONS], 0.0) == CasePriority.MEDIUM

    def test_thresholds_are_exclusive(self):
        assert determine_priority([], 0.8) == CasePriority.MEDIUM
        assert determine_priority([], 0.6) == CasePriority.LOW

    def test_requires_human_review(self):
        assert requires_human_review([ReasonCode.MONETIZATION_BYPASS], 0.0)
        assert requires_human_review([ReasonCode.SPAM], 0.81)
        assert not requires_human_review([ReasonCode.SPAM], 0.8)

    def test_review_reason_labels(self):
        assert review_reason([ReasonCode.KYC_MISMATCH, ReasonCode.SPAM], 0.1) == "kyc_mismatch"
        assert review_reason([ReasonCode.SPAM], 0.9) == "confidence 0.90"

    def test_max_priority(self):
        assert max_priority(CasePriority.HIGH, CasePriority.LOW, None) == CasePriority.HIGH
        assert max_priority() == CasePriority.LOW


class TestTransitionTable:
    """Tests for the allowed status transitions."""

    def test_resolved_can_only_be_appealed(self):
        assert can_transition(CaseStatus.RESOLVED, CaseStatus.APPEALED)
        assert not can_transition(CaseStatus.RESOLVED, CaseStatus.OPEN)
        assert not can_transition(CaseStatus.RESOLVED, CaseStatus.UNDER_REVIEW)

    def test_appealed_returns_to_resolved(self):
        assert can_transition(CaseStatus.APPEALED, CaseStatus.RESOLVED)
        assert not can_transition(CaseStatus.APPEALED, CaseStatus.ESCALATED)

    def test_open_cannot_skip_to_pending_action(self):
        assert not can_transition(CaseStatus.OPEN, CaseStatus.PENDING_ACTION)
        assert can_transition(CaseStatus.UNDER_REVIEW, CaseStatus.PENDING_ACTION)


class TestCaseCreation:
    """Tests for opening and merging cases."""

    @pytest.mark.asyncio
    async def test_new_case_records_history(self, case_manager, clock):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        case = await case_manager.get_case(case_id)
        assert case.status == CaseStatus.OPEN
        assert case.priority == CasePriority.LOW
        assert case.opened_at == clock()
        assert case.reason_codes == frozenset({ReasonCode.SPAM})
        assert [entry.action for entry in case.history] == ["created"]
        assert case.history[0].actor_type == ActorType.SYSTEM

    @pytest.mark.asyncio
    async def test_second_trigger_merges_into_open_case(self, case_manager):
        first = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        second = await case_manager.create_case("u1", [ReasonCode.HARASSMENT, ReasonCode.SPAM], "cm1")

        assert second == first
        cases = await case_manager.list_cases(subject_user_id="u1")
        assert len(cases) == 1
        merged = await case_manager.get_case(first)
        assert merged.reason_codes == frozenset({ReasonCode.SPAM, ReasonCode.HARASSMENT})
        assert [entry.action for entry in merged.history] == ["created", "reasons_merged"]
        assert merged.history[1].details["added_reasons"] == ["harassment"]
        assert merged.history[1].actor_type == ActorType.MODERATOR

    @pytest.mark.asyncio
    async def test_merge_never_lowers_priority(self, case_manager):
        case_id = await case_manager.create_case("u1", [ReasonCode.IDENTITY_FRAUD], "AUTO")
        await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        case = await case_manager.get_case(case_id)
        assert case.priority == CasePriority.CRITICAL

    @pytest.mark.asyncio
    async def test_merge_raises_priority(self, case_manager):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        await case_manager.create_case("u1", [ReasonCode.MINOR_SAFETY], "AUTO")

        case = await case_manager.get_case(case_id)
        assert case.priority == CasePriority.CRITICAL
        queue = await case_manager.list_review_queue()
        assert [item.case_id for item in queue] == [case_id]

    @pytest.mark.asyncio
    async def test_mandatory_review_reason_is_queued(self, case_manager):
        case_id = await case_manager.create_case("u1", [ReasonCode.KYC_MISMATCH], "AUTO")

        queue = await case_manager.list_review_queue()
        assert len(queue) == 1
        assert queue[0].case_id == case_id
        assert queue[0].priority == CasePriority.HIGH
        assert queue[0].reason == "kyc_mismatch"

    @pytest.mark.asyncio
    async def test_low_risk_case_is_not_queued(self, case_manager):
        await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        assert await case_manager.list_review_queue() == []

    @pytest.mark.asyncio
    async def test_forced_priority_and_review(self, case_manager):
        case_id = await case_manager.create_case(
            "u1", [ReasonCode.SPAM], "AUTO", priority=CasePriority.CRITICAL, require_review=True
        )

        case = await case_manager.get_case(case_id)
        assert case.priority == CasePriority.CRITICAL
        assert len(await case_manager.list_review_queue()) == 1

    @pytest.mark.asyncio
    async def test_resolved_case_does_not_absorb_new_triggers(self, case_manager, staff):
        first = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        await case_manager.resolve_case(first, "admin1", CaseResolution(ResolutionOutcome.WARNING))

        second = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        assert second != first

    @pytest.mark.asyncio
    async def test_concurrent_creation_yields_one_case(self, case_manager):
        ids = await asyncio.gather(
            *(case_manager.create_case("u1", [reason], "AUTO") for reason in (ReasonCode.SPAM, ReasonCode.SCAM, ReasonCode.OTHER))
        )

        assert len(set(ids)) == 1
        case = await case_manager.get_case(ids[0])
        assert case.reason_codes == frozenset({ReasonCode.SPAM, ReasonCode.SCAM, ReasonCode.OTHER})


class TestCaseTransitions:
    """Tests for assignment, escalation and resolution."""

    @pytest.mark.asyncio
    async def test_assign_to_community_mod_is_rejected(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        with pytest.raises(AuthorizationError):
            await case_manager.assign_case(case_id, staff["community"], staff["admins"][0])

        case = await case_manager.get_case(case_id)
        assert case.status == CaseStatus.OPEN
        assert case.assignee_id is None

    @pytest.mark.asyncio
    async def test_assign_to_trusted_mod(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.KYC_MISMATCH], "AUTO")

        case = await case_manager.assign_case(case_id, staff["trusted"], staff["admins"][0])

        assert case.status == CaseStatus.UNDER_REVIEW
        assert case.assignee_id == staff["trusted"]
        stored = await case_manager.get_case(case_id)
        assert stored.status == CaseStatus.UNDER_REVIEW
        assert stored.history[-1].action == "assigned"
        assert await case_manager.list_review_queue() == []

    @pytest.mark.asyncio
    async def test_resolve_requires_admin(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        with pytest.raises(AuthorizationError):
            await case_manager.resolve_case(case_id, staff["trusted"], CaseResolution(ResolutionOutcome.WARNING))

    @pytest.mark.asyncio
    async def test_resolve_records_resolution(self, case_manager, staff, clock):
        case_id = await case_manager.create_case("u1", [ReasonCode.KYC_MISMATCH], "AUTO")
        clock.advance(120)

        await case_manager.resolve_case(
            case_id, "admin1", CaseResolution(ResolutionOutcome.RESTRICTION, "confirmed mismatch")
        )

        case = await case_manager.get_case(case_id)
        assert case.status == CaseStatus.RESOLVED
        assert case.resolution.outcome == ResolutionOutcome.RESTRICTION
        assert case.resolution.review_note == "confirmed mismatch"
        assert case.resolved_by == "admin1"
        assert case.resolved_at == clock()
        assert await case_manager.list_review_queue() == []

    @pytest.mark.asyncio
    async def test_resolved_case_cannot_be_reassigned(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        await case_manager.resolve_case(case_id, "admin1", CaseResolution(ResolutionOutcome.WARNING))

        with pytest.raises(InvalidTransitionError):
            await case_manager.assign_case(case_id, staff["trusted"], "admin1")

    @pytest.mark.asyncio
    async def test_escalation_requeues_at_critical(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        await case_manager.assign_case(case_id, staff["trusted"], "admin1")

        case = await case_manager.escalate_case(case_id, staff["trusted"], "needs an admin")

        assert case.status == CaseStatus.ESCALATED
        queue = await case_manager.list_review_queue()
        assert queue[0].case_id == case_id
        assert queue[0].priority == CasePriority.CRITICAL
        assert queue[0].reason == "escalated"

    @pytest.mark.asyncio
    async def test_pending_action_then_resolve(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        await case_manager.assign_case(case_id, staff["trusted"], "admin1")

        await case_manager.mark_pending_action(case_id, staff["trusted"], "waiting on evidence")
        await case_manager.resolve_case(case_id, "admin1", CaseResolution(ResolutionOutcome.NO_VIOLATION))

        case = await case_manager.get_case(case_id)
        assert [entry.action for entry in case.history] == ["created", "assigned", "pending_action", "resolved"]

    @pytest.mark.asyncio
    async def test_case_note_keeps_status(self, case_manager, staff):
        case_id = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")

        await case_manager.add_case_note(case_id, staff["community"], "linked to a spam ring", {"ring": "r7"})

        case = await case_manager.get_case(case_id)
        assert case.status == CaseStatus.OPEN
        assert case.history[-1].action == "note"
        assert case.history[-1].details == {"note": "linked to a spam ring", "ring": "r7"}

    @pytest.mark.asyncio
    async def test_unknown_case(self, case_manager, staff):
        with pytest.raises(NotFoundError):
            await case_manager.get_case("case_missing")
        with pytest.raises(NotFoundError):
            await case_manager.escalate_case("case_missing", staff["trusted"])


class TestReviewQueue:
    """Tests for queue ordering and claiming."""

    @pytest.mark.asyncio
    async def test_queue_orders_by_priority_then_age(self, case_manager, clock):
        high = await case_manager.create_case("u1", [ReasonCode.KYC_MISMATCH], "AUTO")
        clock.advance(10)
        medium = await case_manager.create_case("u2", [ReasonCode.PERSISTENT_VIOLATIONS], "AUTO")
        clock.advance(10)
        critical = await case_manager.create_case("u3", [ReasonCode.MINOR_SAFETY], "AUTO")
        clock.advance(10)
        newer_high = await case_manager.create_case("u4", [ReasonCode.HIGH_RISK_CONTENT], "AUTO")

        queue = await case_manager.list_review_queue()

        assert [item.case_id for item in queue] == [critical, high, newer_high, medium]

    @pytest.mark.asyncio
    async def test_claim_next_assigns_top_item(self, case_manager, staff):
        await case_manager.create_case("u1", [ReasonCode.KYC_MISMATCH], "AUTO")
        critical = await case_manager.create_case("u2", [ReasonCode.CRIMINAL_ACTIVITY], "AUTO")

        case = await case_manager.claim_next_review_item(staff["trusted"])

        assert case.case_id == critical
        assert case.status == CaseStatus.UNDER_REVIEW
        assert case.assignee_id == staff["trusted"]
        assert len(await case_manager.list_review_queue()) == 1

    @pytest.mark.asyncio
    async def test_claim_on_empty_queue(self, case_manager, staff):
        assert await case_manager.claim_next_review_item(staff["trusted"]) is None

    @pytest.mark.asyncio
    async def test_community_mod_cannot_claim(self, case_manager, staff):
        await case_manager.create_case("u1", [ReasonCode.KYC_MISMATCH], "AUTO")

        with pytest.raises(AuthorizationError):
            await case_manager.claim_next_review_item(staff["community"])


class TestEscalatedCaseWithNewerActiveCase:
    """An escalated case stops being active, so a newer trigger can open a second case."""

    async def _escalated_then_reopened(self, case_manager, staff):
        escalated = await case_manager.create_case("u1", [ReasonCode.SPAM], "AUTO")
        await case_manager.escalate_case(escalated, staff["trusted"], "needs an admin")
        active = await case_manager.create_case("u1", [ReasonCode.HARASSMENT], "AUTO")
        assert active != escalated
        return escalated, active

    @pytest.mark.asyncio
    async def test_assigning_escalated_case_is_rejected(self, case_manager, staff):
        escalated, active = await self._escalated_then_reopened(case_manager, staff)

        with pytest.raises(InvariantViolation):
            await case_manager.assign_case(escalated, staff["trusted"], "admin1")

        assert (await case_manager.get_case(escalated)).status == CaseStatus.ESCALATED
        assert (await case_manager.get_case(active)).status == CaseStatus.OPEN

    @pytest.mark.asyncio
    async def test_claim_folds_escalated_case_into_open_case(self, case_manager, staff):
        escalated, active = await self._escalated_then_reopened(case_manager, staff)

        case = await case_manager.claim_next_review_item("admin1")

        assert case.case_id == active
        assert case.status == CaseStatus.UNDER_REVIEW
        assert case.assignee_id == "admin1"
        stored = await case_manager.get_case(active)
        assert stored.reason_codes == frozenset({ReasonCode.SPAM, ReasonCode.HARASSMENT})
        assert stored.priority == CasePriority.CRITICAL
        assert [entry.action for entry in stored.history] == ["created", "reasons_merged", "claimed"]
        folded = await case_manager.get_case(escalated)
        assert folded.history[-1].action == "merged_into"
        assert folded.history[-1].details["case_id"] == active
        assert await case_manager.list_review_queue() == []

    @pytest.mark.asyncio
    async def test_claim_skips_past_folded_item(self, case_manager, staff):
        escalated, active = await self._escalated_then_reopened(case_manager, staff)
        await case_manager.assign_case(active, staff["trusted"], "admin1")
        other = await case_manager.create_case("u2", [ReasonCode.KYC_MISMATCH], "AUTO")

        case = await case_manager.claim_next_review_item("admin1")

        assert case.case_id == other
        stored = await case_manager.get_case(active)
        assert stored.status == CaseStatus.UNDER_REVIEW
        assert stored.assignee_id == staff["trusted"]
        assert ReasonCode.SPAM in stored.reason_codes
        assert await case_manager.list_review_queue() == []
