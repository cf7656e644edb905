"""Paid-action boundary.

Any feature that charges credits goes through ``ConsumptionGateway``. The
charge happens first; the caller may run the paid action only after a
successful result. When the action fails afterwards, the charge is
compensated with a ``refunded`` transaction linked to the original debit.

Usage:
    result = await gateway.consume(account_id, ServiceId.BASIC_SCAN)
    if not result.ok:
        return result.reject_reason
    ...  # call the OCR engine
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import UUID

import logfire

from creditgate.config import settings
from creditgate.credits.errors import NotRefundable, UnknownTransaction
from creditgate.credits.ledger import CreditLedger
from creditgate.credits.pricing import (
    ComplexityTier,
    DocumentType,
    PricingCatalog,
    ServiceConfig,
    ServiceId,
)
from creditgate.credits.types import (
    BalanceWarning,
    ConsumeResult,
    EntryMeta,
    FailureReason,
    LedgerResult,
    Quote,
    TransactionType,
)

T = TypeVar("T")


class ConsumptionGateway:
    def __init__(
        self,
        ledger: CreditLedger,
        catalog: PricingCatalog | None = None,
        *,
        low_balance_threshold: int | None = None,
        critical_balance_threshold: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.catalog = catalog or PricingCatalog.from_settings(settings)
        self.low_balance_threshold = (
            settings.low_balance_threshold
            if low_balance_threshold is None
            else low_balance_threshold
        )
        self.critical_balance_threshold = (
            settings.critical_balance_threshold
            if critical_balance_threshold is None
            else critical_balance_threshold
        )

    def balance_warning(self, balance: int) -> BalanceWarning | None:
        if balance <= self.critical_balance_threshold:
            return BalanceWarning.CRITICAL
        if balance <= self.low_balance_threshold:
            return BalanceWarning.LOW
        return None

    async def quote(
        self,
        account_id: str,
        service_id: ServiceId | str,
        tier: ComplexityTier | str | None = None,
    ) -> Quote:
        """Price an action against the current balance without charging."""
        cost = self.catalog.price(service_id, tier)
        return Quote(cost=cost, balance=await self.ledger.balance(account_id))

    async def consume(
        self,
        account_id: str,
        service_id: ServiceId | str,
        tier: ComplexityTier | str | None = None,
        description: str = "",
        *,
        stage: str | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ConsumeResult:
        """Charge for one paid action.

        The debit is tagged with ``stage``, or with the service's own stage
        when it belongs to the staged workflow.

        Raises:
            UnknownService: If the service is not registered.
            UnknownComplexityTier: If the tier is not configured.
        """
        service = self.catalog.service(service_id)
        cost = self.catalog.price(service.id, tier)
        return await self._charge(
            account_id,
            service,
            cost,
            description=description,
            stage=stage,
            idempotency_key=idempotency_key,
            metadata={"tier": str(tier or "standard"), **(metadata or {})},
        )

    async def consume_document_analysis(
        self,
        account_id: str,
        document_type: DocumentType | str,
        service_id: ServiceId | str = ServiceId.DOCUMENT_AI_ANALYSIS,
        tier: ComplexityTier | str | None = None,
        description: str = "",
    ) -> ConsumeResult:
        """Charge for analysing one document as a single debit."""
        service = self.catalog.service(service_id)
        cost = self.catalog.price_document_analysis(document_type, service.id, tier)
        return await self._charge(
            account_id,
            service,
            cost,
            description=description or f"{service.name}: {DocumentType(document_type)}",
            metadata={"tier": str(tier or "standard"), "document_type": str(document_type)},
        )

    async def _charge(
        self,
        account_id: str,
        service: ServiceConfig,
        cost: int,
        *,
        description: str,
        stage: str | None = None,
        idempotency_key: str | None = None,
        metadata: dict[str, Any],
    ) -> ConsumeResult:
        meta = EntryMeta(
            description=description or service.name,
            service_id=str(service.id),
            stage=str(stage or service.stage) if (stage or service.stage) else None,
            idempotency_key=idempotency_key,
            metadata=metadata,
        )
        result = await self.ledger.try_debit(account_id, cost, meta)

        if not result.ok:
            logfire.info(
                "consume_rejected",
                account_id=account_id,
                service_id=str(service.id),
                cost=cost,
                balance=result.balance,
            )
            return ConsumeResult(ok=False, cost=cost, balance=result.balance, reason=result.reason)

        warning = self.balance_warning(result.balance)
        logfire.info(
            "credits_consumed",
            account_id=account_id,
            service_id=str(service.id),
            cost=cost,
            balance=result.balance,
            warning=warning,
            duplicate=result.duplicate,
        )
        return ConsumeResult(
            ok=True,
            cost=cost,
            balance=result.balance,
            transaction_id=result.transaction.id if result.transaction else None,
            warning=warning,
        )

    async def refund(
        self,
        account_id: str,
        transaction_id: UUID,
        reason: str = "",
    ) -> LedgerResult:
        """Credit back the exact amount of a consumption.

        Refunding the same transaction twice returns the first refund.

        Raises:
            UnknownTransaction: If the transaction does not exist for the account.
            NotRefundable: If the transaction is not a consumption.
        """
        original = await self.ledger.store.get_transaction(transaction_id)
        if original is None or original.account_id != account_id:
            raise UnknownTransaction(transaction_id)
        if original.type is not TransactionType.CONSUMED:
            msg = f"Only consumed transactions can be refunded, got {original.type}"
            raise NotRefundable(msg)

        result = await self.ledger.credit(
            account_id,
            -original.amount,
            EntryMeta(
                description=reason or f"Refund: {original.description}",
                service_id=original.service_id,
                stage=original.stage,
                idempotency_key=f"refund:{transaction_id}",
                related_transaction_id=transaction_id,
                metadata={"reason": reason} if reason else {},
            ),
            transaction_type=TransactionType.REFUNDED,
        )
        logfire.info(
            "credits_refunded",
            account_id=account_id,
            transaction_id=str(transaction_id),
            amount=-original.amount,
            duplicate=result.duplicate,
        )
        return result

    async def perform(
        self,
        account_id: str,
        service_id: ServiceId | str,
        action: Callable[[], Awaitable[T]],
        tier: ComplexityTier | str | None = None,
        description: str = "",
        *,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[ConsumeResult, T | None]:
        """Charge, then run ``action``; refund if the action fails.

        Returns the consumption result and the action's return value. The
        action is never awaited when the charge is rejected.
        """
        charged = await self.consume(account_id, service_id, tier, description, metadata=metadata)
        if not charged.ok:
            return charged, None

        try:
            value = await action()
        except asyncio.CancelledError:
            await asyncio.shield(
                self.refund(account_id, charged.transaction_id, "Action cancelled")
            )
            raise
        except Exception:
            logfire.exception(
                "paid_action_failed",
                account_id=account_id,
                service_id=str(service_id),
                transaction_id=str(charged.transaction_id),
            )
            refunded = await self.refund(account_id, charged.transaction_id, "Action failed")
            return (
                ConsumeResult(
                    ok=False,
                    cost=charged.cost,
                    balance=refunded.balance,
                    transaction_id=charged.transaction_id,
                    reason=FailureReason.ACTION_FAILED,
                ),
                None,
            )
        return charged, value
