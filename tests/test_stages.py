"""Tests for StageProgressTracker."""

from __future__ import annotations

import pytest

from creditgate.credits.errors import InvalidAmount, StageLocked, UnknownStage
from creditgate.credits.pricing import ServiceId
from creditgate.stages.tracker import StageProgressTracker
from creditgate.stages.types import StageDefinition, StageId, StageState


@pytest.fixture
def tracker() -> StageProgressTracker:
    return StageProgressTracker()


class TestStageNavigation:
    """Stages unlock strictly in order."""

    def test_initial_layout(self, tracker):
        states = [stage.state for stage in tracker.stages()]
        assert states == [StageState.AVAILABLE, StageState.LOCKED, StageState.LOCKED]
        assert [stage.order for stage in tracker.stages()] == [1, 2, 3]
        assert tracker.current_stage is None

    def test_locked_stage_cannot_be_entered_until_previous_completes(self, tracker):
        with pytest.raises(StageLocked) as exc_info:
            tracker.set_current_stage("compliance")
        assert exc_info.value.stage_id == "compliance"

        tracker.complete_stage("initial")
        stage = tracker.set_current_stage("compliance")

        assert stage.state is StageState.IN_PROGRESS
        assert tracker.current_stage == "compliance"

    def test_completion_unlocks_only_the_next_stage(self, tracker):
        assert tracker.can_access_stage(StageId.FINAL) is False

        tracker.complete_stage(StageId.INITIAL)

        assert tracker.get_stage(StageId.INITIAL).state is StageState.COMPLETED
        assert tracker.can_access_stage(StageId.COMPLIANCE) is True
        assert tracker.can_access_stage(StageId.FINAL) is False

    def test_completed_stage_stays_accessible(self, tracker):
        tracker.complete_stage(StageId.INITIAL)
        tracker.set_current_stage(StageId.COMPLIANCE)

        tracker.set_current_stage(StageId.INITIAL)

        assert tracker.get_stage(StageId.INITIAL).state is StageState.COMPLETED
        assert tracker.can_access_stage(StageId.INITIAL) is True

    def test_locked_stage_cannot_be_completed(self, tracker):
        with pytest.raises(StageLocked):
            tracker.complete_stage(StageId.FINAL)
        assert tracker.get_stage(StageId.FINAL).state is StageState.LOCKED

    def test_complete_is_idempotent(self, tracker):
        tracker.complete_stage(StageId.INITIAL)
        tracker.set_current_stage(StageId.COMPLIANCE)

        tracker.complete_stage(StageId.INITIAL)

        assert tracker.get_stage(StageId.COMPLIANCE).state is StageState.IN_PROGRESS

    def test_unknown_stage(self, tracker):
        with pytest.raises(UnknownStage):
            tracker.can_access_stage("celebration")

    def test_snapshots_do_not_leak_state(self, tracker):
        snapshot = tracker.get_stage(StageId.FINAL)
        snapshot.state = StageState.COMPLETED
        assert tracker.can_access_stage(StageId.FINAL) is False

    def test_custom_definitions(self):
        tracker = StageProgressTracker(
            [StageDefinition("draft", "Draft", 10), StageDefinition("review", "Review", 10)]
        )
        tracker.complete_stage("draft")
        assert tracker.can_access_stage("review") is True

    def test_duplicate_stage_ids_rejected(self):
        with pytest.raises(ValueError):
            StageProgressTracker(
                [StageDefinition("draft", "Draft", 10), StageDefinition("draft", "Again", 10)]
            )


class TestStageSpend:
    """Budgets are advisory."""

    def test_record_spend_accumulates(self, tracker):
        assert tracker.record_spend(StageId.INITIAL, 100) is False
        assert tracker.record_spend(StageId.INITIAL, 100) is False
        assert tracker.get_stage_credits_used(StageId.INITIAL) == 200
        assert tracker.get_stage(StageId.INITIAL).remaining_budget == 50

    def test_over_budget_warns_but_does_not_block(self, tracker):
        assert tracker.record_spend(StageId.INITIAL, 300) is True
        stage = tracker.get_stage(StageId.INITIAL)
        assert stage.over_budget is True
        assert stage.progress == 1.0
        assert tracker.can_access_stage(StageId.INITIAL) is True

    def test_negative_spend_rejected(self, tracker):
        with pytest.raises(InvalidAmount):
            tracker.record_spend(StageId.INITIAL, -1)


class TestStagedConsumption:
    """Charging within stages and completion rules."""

    @pytest.mark.asyncio
    async def test_submit_to_review_completes_initial(self, tracker, gateway, funded_account):
        account_id = await funded_account(1000)

        await tracker.consume(gateway, account_id, ServiceId.ELIGIBILITY_CHECK)
        assert tracker.get_stage(StageId.INITIAL).state is StageState.IN_PROGRESS

        result = await tracker.consume(gateway, account_id, ServiceId.SUBMIT_TO_REVIEW)

        assert result.ok is True
        assert tracker.get_stage_credits_used(StageId.INITIAL) == 15 + 50
        assert tracker.get_stage(StageId.INITIAL).state is StageState.COMPLETED
        assert tracker.get_stage(StageId.COMPLIANCE).state is StageState.AVAILABLE

    @pytest.mark.asyncio
    async def test_compliance_completes_after_spend_threshold(
        self, tracker, gateway, funded_account
    ):
        account_id = await funded_account(1000)
        tracker.complete_stage(StageId.INITIAL)

        await tracker.consume(gateway, account_id, ServiceId.COMPLIANCE_ADVANCED)
        assert tracker.get_stage(StageId.COMPLIANCE).state is StageState.IN_PROGRESS

        await tracker.consume(gateway, account_id, ServiceId.COMPLIANCE_ADVANCED)
        assert tracker.get_stage(StageId.COMPLIANCE).state is StageState.COMPLETED
        assert tracker.can_access_stage(StageId.FINAL) is True

    @pytest.mark.asyncio
    async def test_final_application_completes_final(self, tracker, gateway, funded_account):
        account_id = await funded_account(1000)
        tracker.complete_stage(StageId.INITIAL)
        tracker.complete_stage(StageId.COMPLIANCE)

        await tracker.consume(gateway, account_id, ServiceId.TRANSIT_VISA_FINAL)

        assert tracker.get_stage(StageId.FINAL).state is StageState.COMPLETED

    @pytest.mark.asyncio
    async def test_locked_stage_blocks_without_charging(
        self, tracker, gateway, ledger, funded_account
    ):
        account_id = await funded_account(1000)

        with pytest.raises(StageLocked):
            await tracker.consume(gateway, account_id, ServiceId.TOURIST_VISA_FINAL)

        assert await ledger.balance(account_id) == 1000

    @pytest.mark.asyncio
    async def test_rejected_charge_records_no_spend(self, tracker, gateway, funded_account):
        account_id = await funded_account(10)

        result = await tracker.consume(gateway, account_id, ServiceId.SUBMIT_TO_REVIEW)

        assert result.ok is False
        assert tracker.get_stage_credits_used(StageId.INITIAL) == 0
        assert tracker.get_stage(StageId.INITIAL).state is not StageState.COMPLETED

    @pytest.mark.asyncio
    async def test_unstaged_service_uses_current_stage(self, tracker, gateway, funded_account):
        account_id = await funded_account(100)
        tracker.set_current_stage(StageId.INITIAL)

        await tracker.consume(gateway, account_id, ServiceId.BASIC_SCAN)

        assert tracker.get_stage_credits_used(StageId.INITIAL) == 5

    @pytest.mark.asyncio
    async def test_unstaged_service_without_current_stage(self, tracker, gateway, funded_account):
        account_id = await funded_account(100)
        with pytest.raises(ValueError):
            await tracker.consume(gateway, account_id, ServiceId.BASIC_SCAN)

    @pytest.mark.asyncio
    async def test_refresh_spend_from_log(self, tracker, gateway, log, funded_account):
        account_id = await funded_account(1000)
        await gateway.consume(account_id, ServiceId.DOCUMENT_UPLOAD)
        await gateway.consume(account_id, ServiceId.AI_BRAIN_PREMIUM)
        await gateway.consume(account_id, ServiceId.BASIC_SCAN)

        await tracker.refresh_spend(log, account_id)

        assert tracker.get_stage_credits_used(StageId.INITIAL) == 10 + 20
        assert tracker.get_stage_credits_used(StageId.COMPLIANCE) == 0
