"""Exceptions raised by the credit core.

Expected business outcomes (insufficient funds, unconfirmed payments) are
returned as results, see ``creditgate.credits.types.FailureReason``. The
exceptions here signal programmer errors, sequencing violations and storage
failures.
"""

from __future__ import annotations


class CreditError(Exception):
    """Base class for all credit core errors."""


class UnknownService(CreditError, LookupError):
    """Service identifier is not registered in the pricing catalog."""

    def __init__(self, service_id: object) -> None:
        super().__init__(f"Unknown service: {service_id!r}")
        self.service_id = service_id


class UnknownComplexityTier(CreditError, LookupError):
    """Complexity tier has no configured multiplier."""

    def __init__(self, tier: object) -> None:
        super().__init__(f"Unknown complexity tier: {tier!r}")
        self.tier = tier


class UnknownDocumentType(CreditError, LookupError):
    """Document type has no per-document rate."""

    def __init__(self, document_type: object) -> None:
        super().__init__(f"Unknown document type: {document_type!r}")
        self.document_type = document_type


class UnknownPackage(CreditError, LookupError):
    """Credit package id is not registered."""

    def __init__(self, package_id: str) -> None:
        super().__init__(f"Unknown credit package: {package_id!r}")
        self.package_id = package_id


class UnknownSubscriptionTier(CreditError, LookupError):
    """Subscription tier id is not registered."""

    def __init__(self, tier_id: str) -> None:
        super().__init__(f"Unknown subscription tier: {tier_id!r}")
        self.tier_id = tier_id


class InvalidAmount(CreditError, ValueError):
    """Credit amount must be a positive integer."""

    def __init__(self, amount: object) -> None:
        super().__init__(f"Amount must be a positive integer, got {amount!r}")
        self.amount = amount


class AccountNotFound(CreditError, LookupError):
    """Account was never opened in the ledger."""

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account {account_id!r} not found")
        self.account_id = account_id


class UnknownTransaction(CreditError, LookupError):
    """Transaction id does not exist for the account."""

    def __init__(self, transaction_id: object) -> None:
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class NotRefundable(CreditError):
    """Only consumption transactions can be refunded."""


class StageLocked(CreditError):
    """Workflow stage is not reachable until the previous stage completes."""

    def __init__(self, stage_id: str) -> None:
        super().__init__(f"Stage {stage_id!r} is locked")
        self.stage_id = stage_id


class UnknownStage(CreditError, LookupError):
    """Stage id is not part of the workflow."""

    def __init__(self, stage_id: str) -> None:
        super().__init__(f"Unknown stage: {stage_id!r}")
        self.stage_id = stage_id


class UnknownVersion(CreditError, LookupError):
    """Artifact version is not in the version history."""

    def __init__(self, version_id: str) -> None:
        super().__init__(f"Unknown artifact version: {version_id!r}")
        self.version_id = version_id


class PersistenceUnavailable(CreditError, RuntimeError):
    """Storage failed; the operation in progress was not committed."""
