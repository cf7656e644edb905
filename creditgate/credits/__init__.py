"""Credit economy: pricing, ledger, consumption and grants.

Provides:
- Service registry with tiered pricing
- Credit packages and subscription tiers
- Ledger with an append-only transaction log
- Consumption gateway for paid actions, with refunds
- Grant manager for purchases, subscriptions and bonuses
"""

from creditgate.credits.events import BalanceEvents
from creditgate.credits.gateway import ConsumptionGateway
from creditgate.credits.grants import GrantManager, PaymentProcessor
from creditgate.credits.ledger import CreditLedger
from creditgate.credits.log import AuditReport, CreditAnalytics, TransactionLog
from creditgate.credits.packs import (
    CREDIT_PACKAGES,
    SUBSCRIPTION_TIERS,
    CreditPackage,
    SubscriptionTier,
    find_best_package,
    get_package,
    get_subscription_tier,
)
from creditgate.credits.pricing import (
    SERVICE_REGISTRY,
    ComplexityTier,
    DocumentType,
    PricingCatalog,
    ServiceCategory,
    ServiceConfig,
    ServiceId,
    calculate_credit_cost,
    get_service,
)
from creditgate.credits.store import AccountHandle, InMemoryLedgerStore, LedgerStore
from creditgate.credits.types import (
    BalanceChanged,
    BalanceWarning,
    ConsumeResult,
    FailureReason,
    GrantResult,
    Quote,
    Transaction,
    TransactionType,
)

__all__ = [
    # Pricing
    "ServiceId",
    "ServiceCategory",
    "ServiceConfig",
    "ComplexityTier",
    "DocumentType",
    "SERVICE_REGISTRY",
    "PricingCatalog",
    "calculate_credit_cost",
    "get_service",
    # Packages
    "CreditPackage",
    "SubscriptionTier",
    "CREDIT_PACKAGES",
    "SUBSCRIPTION_TIERS",
    "get_package",
    "get_subscription_tier",
    "find_best_package",
    # Ledger and storage
    "LedgerStore",
    "AccountHandle",
    "InMemoryLedgerStore",
    "CreditLedger",
    "TransactionLog",
    "CreditAnalytics",
    "AuditReport",
    "BalanceEvents",
    # Services
    "ConsumptionGateway",
    "GrantManager",
    "PaymentProcessor",
    # Types
    "Transaction",
    "TransactionType",
    "FailureReason",
    "BalanceWarning",
    "BalanceChanged",
    "ConsumeResult",
    "GrantResult",
    "Quote",
]
