"""Paid versioning of generated trip plans.

Each remix charges credits and appends a new version that points at its
parent. Versions are immutable and never removed, so the history is always
a tree: every non-root version refers to a version that exists.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any
from uuid import UUID, uuid4

import logfire

from creditgate.credits.errors import UnknownVersion
from creditgate.credits.gateway import ConsumptionGateway
from creditgate.credits.pricing import ComplexityTier, ServiceId
from creditgate.credits.types import FailureReason


class RemixTier(StrEnum):
    BASIC = "basic"
    ADVANCED = "advanced"
    PREMIUM = "premium"

    @property
    def service_id(self) -> ServiceId:
        return _TIER_SERVICES[self]


_TIER_SERVICES = {
    RemixTier.BASIC: ServiceId.REMIX_BASIC,
    RemixTier.ADVANCED: ServiceId.REMIX_ADVANCED,
    RemixTier.PREMIUM: ServiceId.REMIX_PREMIUM,
}


class RemixOption(StrEnum):
    """Kinds of change a remix may make to a plan."""

    CHANGE_DESTINATION = "change_destination"
    ADJUST_BUDGET = "adjust_budget"
    MODIFY_DATES = "modify_dates"
    UPDATE_PREFERENCES = "update_preferences"
    ADD_ACTIVITIES = "add_activities"
    CHANGE_ACCOMMODATION = "change_accommodation"


# Payload fields each option is allowed to change. Fields not listed here
# may be changed by any remix.
OPTION_FIELDS: dict[RemixOption, frozenset[str]] = {
    RemixOption.CHANGE_DESTINATION: frozenset({"destination"}),
    RemixOption.ADJUST_BUDGET: frozenset({"budget"}),
    RemixOption.MODIFY_DATES: frozenset({"start_date", "end_date", "duration"}),
    RemixOption.UPDATE_PREFERENCES: frozenset({"interests", "travel_style"}),
    RemixOption.ADD_ACTIVITIES: frozenset({"activities"}),
    RemixOption.CHANGE_ACCOMMODATION: frozenset({"accommodation_types"}),
}

LOW_BUDGET = 1000
MIN_INTERESTS = 3


def _freeze(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        msg = f"Plan payload must be a mapping, got {type(payload).__name__}"
        raise TypeError(msg)
    return MappingProxyType(copy.deepcopy(dict(payload)))


@dataclass(frozen=True, slots=True)
class ArtifactVersion:
    """One immutable version of a plan.

    ``payload`` is a read-only deep copy; use ``to_dict`` for an editable one.
    """

    id: str
    parent_id: str | None
    number: int
    payload: Mapping[str, Any]
    cost_tier: RemixTier | None = None
    options: frozenset[RemixOption] = frozenset()
    credits_used: int = 0
    transaction_id: UUID | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.payload))


@dataclass(frozen=True, slots=True)
class RemixResult:
    ok: bool
    version: ArtifactVersion | None = None
    cost: int = 0
    balance: int = 0
    reason: FailureReason | None = None


@dataclass(frozen=True, slots=True)
class VersionComparison:
    budget_difference: float
    duration_difference: int
    traveler_difference: int
    destination_changed: bool
    credits_used: int
    is_upgrade: bool
    changes: list[str]


Generator = Callable[
    [ArtifactVersion, frozenset[RemixOption], dict[str, Any]],
    Awaitable[dict[str, Any]],
]


class VersionHistory:
    """Append-only store of versions."""

    def __init__(self) -> None:
        self._versions: dict[str, ArtifactVersion] = {}

    def add(self, version: ArtifactVersion) -> None:
        if version.id in self._versions:
            msg = f"Version {version.id} already exists"
            raise ValueError(msg)
        if version.parent_id is not None and version.parent_id not in self._versions:
            raise UnknownVersion(version.parent_id)
        self._versions[version.id] = version

    def get(self, version_id: str) -> ArtifactVersion:
        try:
            return self._versions[version_id]
        except KeyError:
            raise UnknownVersion(version_id) from None

    def children(self, version_id: str) -> list[ArtifactVersion]:
        self.get(version_id)
        return [v for v in self._versions.values() if v.parent_id == version_id]

    def lineage(self, version_id: str) -> list[ArtifactVersion]:
        """The version and its ancestors, root first."""
        chain = [self.get(version_id)]
        while chain[-1].parent_id is not None:
            chain.append(self._versions[chain[-1].parent_id])
        return list(reversed(chain))

    def roots(self) -> list[ArtifactVersion]:
        return [v for v in self._versions.values() if v.is_root]

    def __contains__(self, version_id: object) -> bool:
        return version_id in self._versions

    def __iter__(self) -> Iterator[ArtifactVersion]:
        return iter(list(self._versions.values()))

    def __len__(self) -> int:
        return len(self._versions)


def normalize_options(
    requested: Iterable[RemixOption | str] | Mapping[str, bool],
) -> frozenset[RemixOption]:
    """Accept ``{"adjust_budget": True}`` or an iterable of options."""
    if isinstance(requested, Mapping):
        requested = [name for name, enabled in requested.items() if enabled]
    return frozenset(RemixOption(option) for option in requested)


class RemixVersionManager:
    """Creates paid versions of one plan.

    ``generator`` (optional) produces the new payload from the parent, the
    requested options and the requested changes; when it raises, the
    charge is refunded and no version is created.
    """

    def __init__(
        self,
        gateway: ConsumptionGateway,
        history: VersionHistory | None = None,
        *,
        generator: Generator | None = None,
    ) -> None:
        self.gateway = gateway
        self.history = history if history is not None else VersionHistory()
        self.generator = generator

    def get(self, version_id: str) -> ArtifactVersion:
        return self.history.get(version_id)

    def versions(self) -> list[ArtifactVersion]:
        return list(self.history)

    def lineage(self, version_id: str) -> list[ArtifactVersion]:
        return self.history.lineage(version_id)

    def children(self, version_id: str) -> list[ArtifactVersion]:
        return self.history.children(version_id)

    async def create_initial(self, account_id: str, payload: Mapping[str, Any]) -> RemixResult:
        """Charge for a first plan and store it as a root version."""
        frozen = _freeze(payload)
        charged = await self.gateway.consume(
            account_id,
            ServiceId.INITIAL_PLAN,
            ComplexityTier.STANDARD,
            "Initial trip plan",
        )
        if not charged.ok:
            return RemixResult(
                ok=False, cost=charged.cost, balance=charged.balance, reason=charged.reason
            )

        version = ArtifactVersion(
            id=f"plan_{uuid4().hex[:12]}",
            parent_id=None,
            number=len(self.history) + 1,
            payload=frozen,
            credits_used=charged.cost,
            transaction_id=charged.transaction_id,
        )
        self.history.add(version)
        logfire.info("plan_created", account_id=account_id, version_id=version.id)
        return RemixResult(ok=True, version=version, cost=charged.cost, balance=charged.balance)

    async def create_version(
        self,
        account_id: str,
        parent: ArtifactVersion | str,
        requested_options: Iterable[RemixOption | str] | Mapping[str, bool],
        cost_tier: RemixTier | str,
        changes: Mapping[str, Any] | None = None,
    ) -> RemixResult:
        """Charge for a remix and append the new version under ``parent``.

        Nothing is created when the charge is rejected or generation fails.
        A generator result that is not a mapping counts as a failure. Failed
        and cancelled generations are refunded, and cancellation is re-raised.

        Raises:
            UnknownVersion: If the parent is not in the history.
            ValueError: If ``changes`` touch a field no requested option allows.
        """
        parent_version = self.history.get(parent if isinstance(parent, str) else parent.id)
        tier = RemixTier(cost_tier)
        options = normalize_options(requested_options)
        changes = dict(changes or {})
        self._check_changes(options, changes)

        async def generate() -> Mapping[str, Any]:
            payload = parent_version.to_dict()
            payload.update(copy.deepcopy(changes))
            if self.generator is not None:
                payload = await self.generator(parent_version, options, payload)
            return _freeze(payload)

        # A failed or cancelled generation is refunded by the gateway
        charged, frozen = await self.gateway.perform(
            account_id,
            tier.service_id,
            generate,
            ComplexityTier.STANDARD,
            f"{tier.value.title()} remix of {parent_version.id}",
            metadata={"parent_id": parent_version.id, "options": sorted(options)},
        )
        if not charged.ok:
            if charged.reason is FailureReason.ACTION_FAILED:
                logfire.warn(
                    "remix_generation_failed",
                    account_id=account_id,
                    parent_id=parent_version.id,
                )
            return RemixResult(
                ok=False, cost=charged.cost, balance=charged.balance, reason=charged.reason
            )

        version = ArtifactVersion(
            id=f"remix_{uuid4().hex[:12]}",
            parent_id=parent_version.id,
            number=len(self.history) + 1,
            payload=frozen,
            cost_tier=tier,
            options=options,
            credits_used=charged.cost,
            transaction_id=charged.transaction_id,
        )
        self.history.add(version)
        logfire.info(
            "remix_created",
            account_id=account_id,
            version_id=version.id,
            parent_id=parent_version.id,
            tier=tier,
            cost=charged.cost,
        )
        return RemixResult(ok=True, version=version, cost=charged.cost, balance=charged.balance)

    @staticmethod
    def _check_changes(options: frozenset[RemixOption], changes: Mapping[str, Any]) -> None:
        allowed = set().union(*(OPTION_FIELDS[o] for o in options)) if options else set()
        governed = set().union(*OPTION_FIELDS.values())
        blocked = sorted(k for k in changes if k in governed and k not in allowed)
        if blocked:
            msg = f"Changes to {', '.join(blocked)} need the matching remix option"
            raise ValueError(msg)

    def get_suggested_options(self, version: ArtifactVersion) -> frozenset[RemixOption]:
        """Options worth offering for a version, based on its payload."""
        payload = version.payload
        suggested = {RemixOption.UPDATE_PREFERENCES}
        budget = payload.get("budget")
        if isinstance(budget, int | float) and budget < LOW_BUDGET:
            suggested.add(RemixOption.ADJUST_BUDGET)
        if len(payload.get("interests") or ()) < MIN_INTERESTS:
            suggested.add(RemixOption.ADD_ACTIVITIES)
        if len(payload.get("accommodation_types") or ()) == 1:
            suggested.add(RemixOption.CHANGE_ACCOMMODATION)
        return frozenset(suggested)

    def compare_versions(
        self, first: ArtifactVersion, second: ArtifactVersion
    ) -> VersionComparison:
        a, b = first.payload, second.payload
        budget_difference = float(b.get("budget") or 0) - float(a.get("budget") or 0)
        duration_difference = int(b.get("duration") or 0) - int(a.get("duration") or 0)
        traveler_difference = int(b.get("travelers") or 0) - int(a.get("travelers") or 0)
        destination_changed = a.get("destination") != b.get("destination")

        changes = []
        if budget_difference:
            direction = "increased" if budget_difference > 0 else "decreased"
            changes.append(f"Budget {direction} by {abs(budget_difference):g}")
        if duration_difference:
            changes.append(f"Duration changed by {duration_difference} days")
        if traveler_difference:
            changes.append(f"Travelers changed by {traveler_difference}")
        if destination_changed:
            changes.append(f"Destination changed to {b.get('destination')}")

        return VersionComparison(
            budget_difference=budget_difference,
            duration_difference=duration_difference,
            traveler_difference=traveler_difference,
            destination_changed=destination_changed,
            credits_used=second.credits_used,
            is_upgrade=second.number > first.number,
            changes=changes,
        )
