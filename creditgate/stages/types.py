"""Types for the staged application workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class StageId(StrEnum):
    """Stages of the visa application workflow, in order."""

    INITIAL = "initial"
    COMPLIANCE = "compliance"
    FINAL = "final"


class StageState(StrEnum):
    """Lifecycle of a single stage.

    locked -> available -> in_progress -> completed
    """

    LOCKED = "locked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def is_accessible(self) -> bool:
        return self is not StageState.LOCKED


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """Static description of a stage.

    A stage completes automatically when one of ``completes_on`` is consumed
    or when its spend reaches ``completion_spend``. ``budget`` is advisory.
    """

    id: str
    title: str
    budget: int
    completes_on: frozenset[str] = field(default_factory=frozenset)
    completion_spend: int | None = None


@dataclass(slots=True)
class Stage:
    """Runtime state of a stage within one workflow."""

    id: str
    order: int
    state: StageState
    budget: int
    spent: int = 0

    @property
    def over_budget(self) -> bool:
        return self.spent > self.budget

    @property
    def remaining_budget(self) -> int:
        return max(0, self.budget - self.spent)

    @property
    def progress(self) -> float:
        """Share of the budget used, capped at 1.0."""
        if self.budget <= 0:
            return 1.0
        return min(self.spent / self.budget, 1.0)


DEFAULT_STAGES: tuple[StageDefinition, ...] = (
    StageDefinition(
        id=StageId.INITIAL,
        title="Initial Application",
        budget=250,
        completes_on=frozenset({"submit_to_review"}),
    ),
    StageDefinition(
        id=StageId.COMPLIANCE,
        title="Compliance Review",
        budget=500,
        completion_spend=100,
    ),
    StageDefinition(
        id=StageId.FINAL,
        title="Final Submission",
        budget=1000,
        completes_on=frozenset(
            {
                "tourist_visa_final",
                "business_visa_final",
                "education_visa_final",
                "transit_visa_final",
            }
        ),
    ),
)
