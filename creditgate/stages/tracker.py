"""Staged workflow gating.

Stages unlock strictly in order: completing stage ``i`` makes stage ``i+1``
available and never touches later stages. Stage budgets are advisory; the
only hard gate on spending is the ledger balance.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

import logfire

from creditgate.credits.errors import InvalidAmount, StageLocked, UnknownStage
from creditgate.credits.types import ConsumeResult, TransactionType
from creditgate.stages.types import DEFAULT_STAGES, Stage, StageDefinition, StageState

if TYPE_CHECKING:
    from creditgate.credits.gateway import ConsumptionGateway
    from creditgate.credits.log import TransactionLog
    from creditgate.credits.pricing import ComplexityTier, ServiceId


class StageProgressTracker:
    """Per-workflow stage state machine.

    Usage:
        tracker = StageProgressTracker()
        result = await tracker.consume(gateway, account_id, ServiceId.SUBMIT_TO_REVIEW)
        tracker.can_access_stage(StageId.COMPLIANCE)  # True once initial completes
    """

    def __init__(self, definitions: Sequence[StageDefinition] = DEFAULT_STAGES) -> None:
        if not definitions:
            msg = "A workflow needs at least one stage"
            raise ValueError(msg)
        self._definitions = {d.id: d for d in definitions}
        if len(self._definitions) != len(definitions):
            msg = "Stage ids must be unique"
            raise ValueError(msg)

        self._stages: dict[str, Stage] = {}
        for order, definition in enumerate(definitions, start=1):
            self._stages[definition.id] = Stage(
                id=definition.id,
                order=order,
                state=StageState.AVAILABLE if order == 1 else StageState.LOCKED,
                budget=definition.budget,
            )
        self._order = [d.id for d in definitions]
        self._current: str | None = None

    def _get(self, stage_id: str) -> Stage:
        try:
            return self._stages[stage_id]
        except KeyError:
            raise UnknownStage(stage_id) from None

    def get_stage(self, stage_id: str) -> Stage:
        """Snapshot of a stage; mutating it does not affect the tracker."""
        return replace(self._get(stage_id))

    def stages(self) -> list[Stage]:
        return [replace(self._stages[stage_id]) for stage_id in self._order]

    @property
    def current_stage(self) -> str | None:
        return self._current

    def can_access_stage(self, stage_id: str) -> bool:
        return self._get(stage_id).state.is_accessible

    def get_stage_credits_used(self, stage_id: str) -> int:
        return self._get(stage_id).spent

    def set_current_stage(self, stage_id: str) -> Stage:
        """Navigate to a stage, starting it if it was only available.

        Raises:
            StageLocked: If the previous stage is not completed yet.
        """
        stage = self._get(stage_id)
        if not stage.state.is_accessible:
            raise StageLocked(stage_id)
        if stage.state is StageState.AVAILABLE:
            stage.state = StageState.IN_PROGRESS
            logfire.info("stage_started", stage=stage_id)
        self._current = stage_id
        return replace(stage)

    def complete_stage(self, stage_id: str) -> Stage:
        """Mark a stage completed and unlock the next one.

        Completing an already completed stage is a no-op.

        Raises:
            StageLocked: If the stage itself is still locked.
        """
        stage = self._get(stage_id)
        if stage.state is StageState.LOCKED:
            raise StageLocked(stage_id)
        if stage.state is StageState.COMPLETED:
            return replace(stage)

        stage.state = StageState.COMPLETED
        logfire.info("stage_completed", stage=stage_id, spent=stage.spent, budget=stage.budget)

        index = self._order.index(stage_id)
        if index + 1 < len(self._order):
            following = self._stages[self._order[index + 1]]
            if following.state is StageState.LOCKED:
                following.state = StageState.AVAILABLE
                logfire.info("stage_unlocked", stage=following.id)
        return replace(stage)

    def record_spend(self, stage_id: str, amount: int) -> bool:
        """Add consumed credits to a stage.

        Returns:
            True if the stage is now over its budget. Overspending only
            logs a warning and never blocks.
        """
        if amount < 0:
            raise InvalidAmount(amount)
        stage = self._get(stage_id)
        stage.spent += amount
        if stage.over_budget:
            logfire.warn(
                "stage_budget_exceeded",
                stage=stage_id,
                spent=stage.spent,
                budget=stage.budget,
            )
        return stage.over_budget

    async def consume(
        self,
        gateway: ConsumptionGateway,
        account_id: str,
        service_id: ServiceId | str,
        tier: ComplexityTier | str | None = None,
        description: str = "",
        *,
        stage_id: str | None = None,
    ) -> ConsumeResult:
        """Charge for a service within a stage and apply completion rules.

        The stage defaults to the service's own stage, then to the current
        stage.

        Raises:
            StageLocked: If the stage is not accessible yet.
            ValueError: If no stage could be determined.
        """
        service = gateway.catalog.service(service_id)
        target = stage_id or service.stage or self._current
        if target is None:
            msg = f"Service {service.id} does not belong to a stage"
            raise ValueError(msg)

        stage = self._get(target)
        if not stage.state.is_accessible:
            raise StageLocked(target)
        if stage.state is StageState.AVAILABLE:
            self.set_current_stage(target)

        result = await gateway.consume(account_id, service.id, tier, description, stage=target)
        if not result.ok:
            return result

        self.record_spend(target, result.cost)
        self._apply_completion_rules(target, str(service.id))
        return result

    def _apply_completion_rules(self, stage_id: str, service_id: str) -> None:
        definition = self._definitions[stage_id]
        stage = self._stages[stage_id]
        if stage.state is StageState.COMPLETED:
            return
        spend_reached = (
            definition.completion_spend is not None
            and stage.spent >= definition.completion_spend
        )
        if service_id in definition.completes_on or spend_reached:
            self.complete_stage(stage_id)

    async def refresh_spend(self, log: TransactionLog, account_id: str) -> None:
        """Re-derive each stage's spend from the account's transaction log.

        Spend is the sum of consumptions tagged with the stage, so it never
        decreases.
        """
        totals = dict.fromkeys(self._order, 0)
        for entry in await log.all(account_id):
            if entry.stage not in totals:
                continue
            if entry.type is TransactionType.CONSUMED:
                totals[entry.stage] -= entry.amount
        for stage_id, spent in totals.items():
            stage = self._stages[stage_id]
            stage.spent = max(stage.spent, spent)
