"""Service registry and pricing catalog.

Every paid action is registered here with its base credit cost. The
effective price of an action is ``ceil(base_cost * multiplier)`` where the
multiplier comes from the complexity tier; multipliers are configuration
(see ``Settings.complexity_multipliers``), never hard-coded at call sites.

To add a new paid action:
1. Add a member to ``ServiceId``
2. Add a ServiceConfig to the list in ``_register_services``
3. Give it a stage if it belongs to the staged application workflow
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from enum import StrEnum

from creditgate.config import settings
from creditgate.credits.errors import (
    InvalidAmount,
    UnknownComplexityTier,
    UnknownDocumentType,
    UnknownService,
)
from creditgate.stages.types import StageId


class ServiceCategory(StrEnum):
    """Groups of paid actions for display and reporting."""

    VISA = "visa"
    DOCUMENT = "document"
    AI = "ai"
    ANALYSIS = "analysis"
    BOOKING = "booking"
    ITINERARY = "itinerary"
    SUPPORT = "support"


class ServiceId(StrEnum):
    """Closed set of paid actions."""

    # Document OCR and compliance checks
    BASIC_SCAN = "basic_scan"
    ADVANCED_ANALYSIS = "advanced_analysis"
    PREMIUM_COMPLIANCE = "premium_compliance"
    FULL_LEGAL_VERIFICATION = "full_legal_verification"
    OCR_PASSPORT_SCAN = "ocr_passport_scan"
    DOCUMENT_AI_ANALYSIS = "document_ai_analysis"

    # Client data analysis
    PERSONAL_INFO_VERIFICATION = "personal_info_verification"
    FINANCIAL_BACKGROUND_CHECK = "financial_background_check"
    TRAVEL_HISTORY_ANALYSIS = "travel_history_analysis"
    RISK_ASSESSMENT = "risk_assessment"
    COMPLETE_PROFILE_ANALYSIS = "complete_profile_analysis"

    # Stage 1 - initial application
    ELIGIBILITY_CHECK = "eligibility_check"
    DOCUMENT_UPLOAD = "document_upload"
    AI_BRAIN_BASIC = "ai_brain_basic"
    AI_BRAIN_ADVANCED = "ai_brain_advanced"
    AI_BRAIN_PREMIUM = "ai_brain_premium"
    SUBMIT_TO_REVIEW = "submit_to_review"

    # Stage 2 - compliance
    COMPLIANCE_BASIC = "compliance_basic"
    COMPLIANCE_ADVANCED = "compliance_advanced"
    COMPLIANCE_PREMIUM = "compliance_premium"
    COMPLIANCE_ENTERPRISE = "compliance_enterprise"
    DOCUMENT_VERIFICATION = "document_verification"
    BACKGROUND_CHECK = "background_check"

    # Stage 3 - final submission
    TOURIST_VISA_FINAL = "tourist_visa_final"
    BUSINESS_VISA_FINAL = "business_visa_final"
    EDUCATION_VISA_FINAL = "education_visa_final"
    TRANSIT_VISA_FINAL = "transit_visa_final"

    # Booking processing
    CAR_RENTAL_BOOKING = "car_rental_booking"
    ACCOMMODATION_BOOKING = "accommodation_booking"
    TRANSPORTATION_BOOKING = "transportation_booking"
    TOUR_BOOKING = "tour_booking"

    # Itinerary generation and remix
    ITINERARY_GENERATION = "itinerary_generation"
    INITIAL_PLAN = "initial_plan"
    REMIX_BASIC = "remix_basic"
    REMIX_ADVANCED = "remix_advanced"
    REMIX_PREMIUM = "remix_premium"

    # Add-ons
    PRIORITY_PROCESSING = "priority_processing"
    EXPEDITED_SERVICE = "expedited_service"
    PREMIUM_SUPPORT = "premium_support"


class ComplexityTier(StrEnum):
    """Pricing multiplier levels."""

    BASIC = "basic"
    STANDARD = "standard"
    ADVANCED = "advanced"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class DocumentType(StrEnum):
    """Documents with their own per-document analysis rate."""

    PASSPORT = "passport"
    PHOTO = "photo"
    BANK_STATEMENT = "bank_statement"
    FLIGHT_TICKET = "flight_ticket"
    HOTEL_BOOKING = "hotel_booking"
    EMPLOYMENT_LETTER = "employment_letter"
    INVITATION_LETTER = "invitation_letter"
    INSURANCE = "insurance"
    BIRTH_CERTIFICATE = "birth_certificate"
    MARRIAGE_CERTIFICATE = "marriage_certificate"


DEFAULT_TIER = ComplexityTier.STANDARD


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """A registered paid action with its base credit cost."""

    id: ServiceId
    name: str
    description: str
    category: ServiceCategory
    base_cost: int
    stage: StageId | None = None


def calculate_credit_cost(base_cost: int, multiplier: Decimal | int | str) -> int:
    """Apply a complexity multiplier to a base cost.

    Args:
        base_cost: Positive base cost in credits.
        multiplier: Positive multiplier; converted to Decimal.

    Returns:
        ``ceil(base_cost * multiplier)`` as an integer.

    Raises:
        InvalidAmount: If the base cost or the multiplier is not positive.
    """
    multiplier = Decimal(str(multiplier))
    if base_cost <= 0:
        raise InvalidAmount(base_cost)
    if multiplier <= 0:
        raise InvalidAmount(multiplier)
    return int((base_cost * multiplier).to_integral_value(rounding=ROUND_CEILING))


# Registry populated at import time
SERVICE_REGISTRY: dict[ServiceId, ServiceConfig] = {}

DOCUMENT_RATES: dict[DocumentType, int] = {
    DocumentType.PASSPORT: 15,
    DocumentType.PHOTO: 8,
    DocumentType.BANK_STATEMENT: 25,
    DocumentType.FLIGHT_TICKET: 12,
    DocumentType.HOTEL_BOOKING: 10,
    DocumentType.EMPLOYMENT_LETTER: 20,
    DocumentType.INVITATION_LETTER: 18,
    DocumentType.INSURANCE: 15,
    DocumentType.BIRTH_CERTIFICATE: 22,
    DocumentType.MARRIAGE_CERTIFICATE: 20,
}


def _register_services() -> None:
    """Register all paid actions."""
    S, C = ServiceId, ServiceCategory
    # fmt: off
    services = [
        # Compliance page services (priced per complexity tier)
        ServiceConfig(S.BASIC_SCAN, "Basic Document Scan", "OCR text extraction and format validation", C.DOCUMENT, 5),
        ServiceConfig(S.ADVANCED_ANALYSIS, "Advanced AI Analysis", "Deep learning document analysis", C.AI, 15),
        ServiceConfig(S.PREMIUM_COMPLIANCE, "Premium Compliance Check", "Comprehensive review with expert validation", C.DOCUMENT, 25),
        ServiceConfig(S.FULL_LEGAL_VERIFICATION, "Full Legal Verification", "Legal compliance with government database checks", C.DOCUMENT, 50),
        ServiceConfig(S.OCR_PASSPORT_SCAN, "OCR Passport Scan", "AI-powered passport data extraction", C.AI, 20),
        ServiceConfig(S.DOCUMENT_AI_ANALYSIS, "Document AI Analysis", "AI analysis of an uploaded document", C.AI, 20),
        # Client data analysis
        ServiceConfig(S.PERSONAL_INFO_VERIFICATION, "Personal Info Verification", "Identity verification and data validation", C.ANALYSIS, 10),
        ServiceConfig(S.FINANCIAL_BACKGROUND_CHECK, "Financial Background Check", "Financial history and stability analysis", C.ANALYSIS, 20),
        ServiceConfig(S.TRAVEL_HISTORY_ANALYSIS, "Travel History Analysis", "Previous travel patterns and visa compliance", C.ANALYSIS, 15),
        ServiceConfig(S.RISK_ASSESSMENT, "Risk Assessment", "Comprehensive risk profiling", C.ANALYSIS, 30),
        ServiceConfig(S.COMPLETE_PROFILE_ANALYSIS, "Complete Profile Analysis", "All verification services combined", C.ANALYSIS, 100),
        # Stage 1 - initial application
        ServiceConfig(S.ELIGIBILITY_CHECK, "Eligibility Check", "Verify visa eligibility", C.VISA, 15, StageId.INITIAL),
        ServiceConfig(S.DOCUMENT_UPLOAD, "Document Upload", "Upload and process a document", C.DOCUMENT, 10, StageId.INITIAL),
        ServiceConfig(S.AI_BRAIN_BASIC, "AI Analysis (Basic)", "Basic AI document analysis", C.AI, 5, StageId.INITIAL),
        ServiceConfig(S.AI_BRAIN_ADVANCED, "AI Analysis (Advanced)", "Comprehensive AI document verification", C.AI, 15, StageId.INITIAL),
        ServiceConfig(S.AI_BRAIN_PREMIUM, "AI Analysis (Premium)", "Premium AI document verification", C.AI, 20, StageId.INITIAL),
        ServiceConfig(S.SUBMIT_TO_REVIEW, "Submit to Review", "Submit application for initial review", C.VISA, 50, StageId.INITIAL),
        # Stage 2 - compliance
        ServiceConfig(S.COMPLIANCE_BASIC, "Basic Compliance Check", "Standard compliance verification", C.DOCUMENT, 25, StageId.COMPLIANCE),
        ServiceConfig(S.COMPLIANCE_ADVANCED, "Advanced Compliance Check", "Comprehensive compliance analysis", C.DOCUMENT, 50, StageId.COMPLIANCE),
        ServiceConfig(S.COMPLIANCE_PREMIUM, "Premium Compliance Check", "Compliance analysis with expert review", C.DOCUMENT, 100, StageId.COMPLIANCE),
        ServiceConfig(S.COMPLIANCE_ENTERPRISE, "Enterprise Compliance Check", "Real-time government verification", C.DOCUMENT, 200, StageId.COMPLIANCE),
        ServiceConfig(S.DOCUMENT_VERIFICATION, "Document Verification", "Verify document authenticity", C.DOCUMENT, 30, StageId.COMPLIANCE),
        ServiceConfig(S.BACKGROUND_CHECK, "Background Check", "Applicant background screening", C.ANALYSIS, 40, StageId.COMPLIANCE),
        # Stage 3 - final submission
        ServiceConfig(S.TOURIST_VISA_FINAL, "Tourist Visa Application", "Final tourist visa submission", C.VISA, 500, StageId.FINAL),
        ServiceConfig(S.BUSINESS_VISA_FINAL, "Business Visa Application", "Final business visa submission", C.VISA, 750, StageId.FINAL),
        ServiceConfig(S.EDUCATION_VISA_FINAL, "Education Visa Application", "Final education visa submission", C.VISA, 1000, StageId.FINAL),
        ServiceConfig(S.TRANSIT_VISA_FINAL, "Transit Visa Application", "Final transit visa submission", C.VISA, 300, StageId.FINAL),
        # Booking processing
        ServiceConfig(S.CAR_RENTAL_BOOKING, "Car Rental Booking", "Car rental booking processing", C.BOOKING, 25),
        ServiceConfig(S.ACCOMMODATION_BOOKING, "Accommodation Booking", "Accommodation booking processing", C.BOOKING, 30),
        ServiceConfig(S.TRANSPORTATION_BOOKING, "Transportation Booking", "Transportation booking processing", C.BOOKING, 20),
        ServiceConfig(S.TOUR_BOOKING, "Tour Package Booking", "Tour package booking processing", C.BOOKING, 35),
        # Itinerary generation and remix
        ServiceConfig(S.ITINERARY_GENERATION, "AI Trip Planner", "Full itinerary generation", C.ITINERARY, 40),
        ServiceConfig(S.INITIAL_PLAN, "Initial Trip Plan", "First version of a trip plan", C.ITINERARY, 25),
        ServiceConfig(S.REMIX_BASIC, "Basic Remix", "Regenerate a trip plan with basic changes", C.ITINERARY, 15),
        ServiceConfig(S.REMIX_ADVANCED, "Advanced Remix", "Regenerate a trip plan with advanced changes", C.ITINERARY, 20),
        ServiceConfig(S.REMIX_PREMIUM, "Premium Remix", "Regenerate a trip plan with premium changes", C.ITINERARY, 30),
        # Add-ons
        ServiceConfig(S.PRIORITY_PROCESSING, "Priority Processing", "Move the application to the front of the queue", C.SUPPORT, 100),
        ServiceConfig(S.EXPEDITED_SERVICE, "Expedited Service", "Expedited end-to-end handling", C.SUPPORT, 150),
        ServiceConfig(S.PREMIUM_SUPPORT, "Premium Support", "Dedicated support agent", C.SUPPORT, 75),
    ]
    # fmt: on

    for service in services:
        if service.id in SERVICE_REGISTRY:
            msg = f"Duplicate service registration: {service.id}"
            raise ValueError(msg)
        SERVICE_REGISTRY[service.id] = service


def resolve_service(service_id: ServiceId | str) -> ServiceId:
    """Validate a service identifier at the catalog boundary.

    Accepts an enum member, its value (``"remix_advanced"``) or its name
    (``"REMIX_ADVANCED"``).

    Raises:
        UnknownService: If the identifier does not name a registered service.
    """
    if isinstance(service_id, ServiceId):
        resolved = service_id
    else:
        try:
            resolved = ServiceId(service_id)
        except ValueError:
            try:
                resolved = ServiceId[service_id]
            except KeyError:
                raise UnknownService(service_id) from None
    if resolved not in SERVICE_REGISTRY:
        raise UnknownService(service_id)
    return resolved


def get_service(service_id: ServiceId | str) -> ServiceConfig:
    """Get a registered service by id.

    Raises:
        UnknownService: If the service is not registered.
    """
    return SERVICE_REGISTRY[resolve_service(service_id)]


class PricingCatalog:
    """Deterministic price computation for paid actions.

    Usage:
        catalog = PricingCatalog()
        cost = catalog.price(ServiceId.ADVANCED_ANALYSIS, ComplexityTier.PREMIUM)
    """

    def __init__(
        self,
        services: Mapping[ServiceId, ServiceConfig] | None = None,
        multipliers: Mapping[str, Decimal | int | str] | None = None,
        document_rates: Mapping[DocumentType, int] | None = None,
    ) -> None:
        self._services = dict(services if services is not None else SERVICE_REGISTRY)
        self._document_rates = dict(
            document_rates if document_rates is not None else DOCUMENT_RATES
        )
        raw = multipliers if multipliers is not None else settings.complexity_multipliers
        self._multipliers: dict[str, Decimal] = {}
        for tier, value in raw.items():
            multiplier = Decimal(str(value))
            if multiplier <= 0:
                msg = f"Multiplier for {tier!r} must be positive, got {multiplier}"
                raise ValueError(msg)
            self._multipliers[str(tier)] = multiplier
        if str(DEFAULT_TIER) not in self._multipliers:
            msg = f"Multipliers must define the default tier {DEFAULT_TIER!r}"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, config) -> PricingCatalog:
        """Build a catalog from a specific ``Settings`` instance."""
        return cls(multipliers=config.complexity_multipliers)

    @property
    def tiers(self) -> dict[str, Decimal]:
        """Configured tiers and multipliers, cheapest first."""
        return dict(sorted(self._multipliers.items(), key=lambda item: item[1]))

    def multiplier(self, tier: ComplexityTier | str | None = None) -> Decimal:
        """Get the multiplier for a complexity tier (default: standard).

        Raises:
            UnknownComplexityTier: If the tier is not configured.
        """
        key = str(tier) if tier is not None else str(DEFAULT_TIER)
        try:
            return self._multipliers[key]
        except KeyError:
            raise UnknownComplexityTier(tier) from None

    def service(self, service_id: ServiceId | str) -> ServiceConfig:
        """Get the configuration of a service in this catalog.

        Raises:
            UnknownService: If the service is not in this catalog.
        """
        resolved = resolve_service(service_id)
        try:
            return self._services[resolved]
        except KeyError:
            raise UnknownService(service_id) from None

    def base_cost(self, service_id: ServiceId | str) -> int:
        return self.service(service_id).base_cost

    def price(
        self,
        service_id: ServiceId | str,
        tier: ComplexityTier | str | None = None,
    ) -> int:
        """Effective credit cost of a paid action.

        Returns:
            ``ceil(base_cost(service) * multiplier(tier))``, always >= 1.

        Raises:
            UnknownService: If the service is not registered.
            UnknownComplexityTier: If the tier is not configured.
        """
        return calculate_credit_cost(self.base_cost(service_id), self.multiplier(tier))

    def document_rate(self, document_type: DocumentType | str) -> int:
        """Base rate for analysing one document of the given type."""
        try:
            return self._document_rates[DocumentType(document_type)]
        except (ValueError, KeyError):
            raise UnknownDocumentType(document_type) from None

    def price_document_analysis(
        self,
        document_type: DocumentType | str,
        service_id: ServiceId | str,
        tier: ComplexityTier | str | None = None,
    ) -> int:
        """Price of running a service over one document.

        The per-document rate and the service rate are each scaled by the
        tier multiplier and rounded up separately, then summed.
        """
        multiplier = self.multiplier(tier)
        document_cost = calculate_credit_cost(self.document_rate(document_type), multiplier)
        return document_cost + calculate_credit_cost(self.base_cost(service_id), multiplier)

    def estimate(
        self,
        services: Iterable[ServiceId | str],
        tier: ComplexityTier | str | None = None,
    ) -> int:
        """Total price of a list of paid actions at one tier."""
        return sum(self.price(service_id, tier) for service_id in services)

    def services_by_category(self, category: ServiceCategory | str) -> list[ServiceConfig]:
        return [s for s in self._services.values() if s.category == category]

    def services_by_stage(self, stage: StageId | str) -> list[ServiceConfig]:
        return [s for s in self._services.values() if s.stage == stage]

    def all_services(self) -> list[ServiceConfig]:
        return list(self._services.values())


# Initialize registry at import
_register_services()
