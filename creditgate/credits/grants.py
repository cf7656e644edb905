"""Adding credits: package purchases, subscription periods and bonuses.

Every grant carries an idempotency key, so a retried webhook or a repeated
render never adds credits twice:

- purchases: ``purchase:{correlation_id}``
- subscriptions: ``subscription:{account_id}:{period_key}``
- refunds (see gateway): ``refund:{transaction_id}``
"""

from __future__ import annotations

import asyncio
from typing import Protocol

import logfire

from creditgate.config import settings
from creditgate.credits.ledger import CreditLedger
from creditgate.credits.packs import (
    CreditPackage,
    get_package,
    get_subscription_tier,
    validate_period_key,
)
from creditgate.credits.types import EntryMeta, FailureReason, GrantResult, TransactionType


class PaymentProcessor(Protocol):
    """External payment provider that confirms a charge for a package."""

    async def confirm_payment(self, correlation_id: str, package: CreditPackage) -> bool: ...


def purchase_key(correlation_id: str) -> str:
    return f"purchase:{correlation_id}"


def subscription_key(account_id: str, period_key: str) -> str:
    return f"subscription:{account_id}:{period_key}"


class GrantManager:
    def __init__(
        self,
        ledger: CreditLedger,
        *,
        confirmation_timeout: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.confirmation_timeout = (
            settings.payment_confirmation_timeout
            if confirmation_timeout is None
            else confirmation_timeout
        )

    async def purchase_package(
        self,
        account_id: str,
        package_id: str,
        *,
        correlation_id: str,
        processor: PaymentProcessor,
    ) -> GrantResult:
        """Buy a package: await payment confirmation, then grant its credits.

        Fails closed: no confirmation within the timeout, a declined payment
        or a processor error all leave the ledger untouched. Cancelling the
        call before confirmation has no ledger effect either.

        Raises:
            UnknownPackage: If the package is not registered.
        """
        package = get_package(package_id)

        existing = await self.ledger.store.find_by_idempotency_key(
            account_id, purchase_key(correlation_id)
        )
        if existing is not None:
            return GrantResult(
                ok=True,
                granted=False,
                balance=await self.ledger.balance(account_id),
                transaction_id=existing.id,
            )

        with logfire.span(
            "grants.await_payment",
            account_id=account_id,
            package_id=package.id,
            correlation_id=correlation_id,
        ):
            try:
                confirmed = await asyncio.wait_for(
                    processor.confirm_payment(correlation_id, package),
                    timeout=self.confirmation_timeout,
                )
            except TimeoutError:
                logfire.warn(
                    "payment_confirmation_timeout",
                    account_id=account_id,
                    correlation_id=correlation_id,
                    timeout=self.confirmation_timeout,
                )
                confirmed = False
            except Exception:
                logfire.exception(
                    "payment_confirmation_failed",
                    account_id=account_id,
                    correlation_id=correlation_id,
                )
                confirmed = False

        if not confirmed:
            return GrantResult(
                ok=False,
                granted=False,
                balance=await self.ledger.balance(account_id),
                reason=FailureReason.PAYMENT_UNCONFIRMED,
            )
        return await self.apply_confirmed_purchase(account_id, package.id, correlation_id)

    async def apply_confirmed_purchase(
        self,
        account_id: str,
        package_id: str,
        correlation_id: str,
    ) -> GrantResult:
        """Grant a package after the processor reported a confirmed charge.

        Base and bonus credits are applied as one ``purchased`` transaction.
        A duplicate webhook for the same correlation id is a no-op.
        """
        package = get_package(package_id)
        result = await self.ledger.credit(
            account_id,
            package.total_credits,
            EntryMeta(
                description=f"Purchased {package.name}",
                idempotency_key=purchase_key(correlation_id),
                metadata={
                    "package_id": package.id,
                    "correlation_id": correlation_id,
                    "base_credits": package.base_credits,
                    "bonus_credits": package.bonus_credits,
                    "price": str(package.price),
                },
            ),
            transaction_type=TransactionType.PURCHASED,
        )

        if result.duplicate:
            logfire.info(
                "purchase_skipped_duplicate",
                account_id=account_id,
                correlation_id=correlation_id,
            )
        else:
            logfire.info(
                "credits_purchased",
                account_id=account_id,
                package_id=package.id,
                credits=package.total_credits,
                balance=result.balance,
            )
        return GrantResult(
            ok=True,
            granted=not result.duplicate,
            balance=result.balance,
            transaction_id=result.transaction.id if result.transaction else None,
        )

    async def grant_subscription_credits(
        self,
        account_id: str,
        tier_id: str,
        period_key: str,
    ) -> GrantResult:
        """Grant a tier's monthly credits once per account and period.

        Raises:
            UnknownSubscriptionTier: If the tier is not registered.
            ValueError: If ``period_key`` is not ``YYYY-MM``.
        """
        tier = get_subscription_tier(tier_id)
        validate_period_key(period_key)

        result = await self.ledger.credit(
            account_id,
            tier.monthly_credits,
            EntryMeta(
                description=f"{tier.name} credits for {period_key}",
                idempotency_key=subscription_key(account_id, period_key),
                metadata={"tier_id": tier.id, "period_key": period_key},
            ),
            transaction_type=TransactionType.GRANTED,
        )

        if result.duplicate:
            logfire.info(
                "subscription_grant_skipped_duplicate",
                account_id=account_id,
                tier_id=tier.id,
                period_key=period_key,
            )
        else:
            logfire.info(
                "subscription_credits_granted",
                account_id=account_id,
                tier_id=tier.id,
                period_key=period_key,
                credits=tier.monthly_credits,
            )
        return GrantResult(
            ok=True,
            granted=not result.duplicate,
            balance=result.balance,
            transaction_id=result.transaction.id if result.transaction else None,
        )

    async def grant_bonus(
        self,
        account_id: str,
        amount: int,
        reason: str,
        *,
        idempotency_key: str | None = None,
    ) -> GrantResult:
        """Add promotional credits."""
        result = await self.ledger.credit(
            account_id,
            amount,
            EntryMeta(description=reason, idempotency_key=idempotency_key),
            transaction_type=TransactionType.BONUS,
        )
        logfire.info(
            "bonus_granted",
            account_id=account_id,
            amount=amount,
            duplicate=result.duplicate,
        )
        return GrantResult(
            ok=True,
            granted=not result.duplicate,
            balance=result.balance,
            transaction_id=result.transaction.id if result.transaction else None,
        )
