"""
Claim schemas: request and response shapes for the /claims API.

Request bodies only check types. Billing correctness (code formats, charge
totals, required fields for submission) is the rule engine's job, so a draft
with problems can still be saved and then scrubbed.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import Field

from app.schemas.common import BaseSchema, TimestampedSchema


# ── Claim parts ──────────────────────────────────────────────────────────────


class Address(BaseSchema):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class PatientInfo(BaseSchema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[Address] = None


class ProviderInfo(BaseSchema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    npi: Optional[str] = None
    tax_id: Optional[str] = None


class InsuranceInfo(BaseSchema):
    payer_id: Optional[str] = None
    payer_name: Optional[str] = None
    policy_number: Optional[str] = None
    group_number: Optional[str] = None
    plan_type: Optional[str] = Field(
        default=None, description="group | individual | medicare | medicaid | self_pay"
    )
    coverage_start: Optional[date] = None
    coverage_end: Optional[date] = None
    timely_filing_limit: Optional[int] = Field(
        default=None, gt=0, description="Payer-specific filing window in days"
    )


class SecondaryInsuranceInfo(InsuranceInfo):
    """Coverage billed after the primary payer has paid."""

    plan_name: Optional[str] = None
    relationship_to_insured: Optional[str] = Field(
        default=None, description="self | spouse | child | other"
    )


class ProcedureLine(BaseSchema):
    code: str
    description: Optional[str] = None
    charge: Decimal = Field(..., description="Unit charge")
    units: int = 1
    modifiers: list[str] = []
    diagnosis_pointers: list[int] = Field(
        default=[], description="1-based positions in diagnosis_codes"
    )
    service_date: Optional[date] = None


# ── Requests ─────────────────────────────────────────────────────────────────


class ClaimCreate(BaseSchema):
    patient_id: str = Field(..., min_length=1, max_length=64)
    provider_id: Optional[str] = Field(default=None, max_length=64)
    patient: Optional[PatientInfo] = None
    provider: Optional[ProviderInfo] = None
    insurance: Optional[InsuranceInfo] = None
    secondary_insurance: Optional[SecondaryInsuranceInfo] = None
    service_date: Optional[date] = None
    place_of_service: Optional[str] = Field(default=None, max_length=8)
    diagnosis_codes: list[str] = []
    procedures: list[ProcedureLine] = []
    total_charges: Optional[Decimal] = Field(
        default=None, description="Defaults to the sum of procedure line totals"
    )
    notes: Optional[str] = None


class ClaimUpdate(BaseSchema):
    """Partial update: only fields present in the request body are applied."""

    patient_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    provider_id: Optional[str] = Field(default=None, max_length=64)
    patient: Optional[PatientInfo] = None
    provider: Optional[ProviderInfo] = None
    insurance: Optional[InsuranceInfo] = None
    secondary_insurance: Optional[SecondaryInsuranceInfo] = None
    service_date: Optional[date] = None
    place_of_service: Optional[str] = Field(default=None, max_length=8)
    diagnosis_codes: Optional[list[str]] = None
    procedures: Optional[list[ProcedureLine]] = None
    total_charges: Optional[Decimal] = None
    notes: Optional[str] = None


class ScrubRequest(BaseSchema):
    auto_fix: bool = False
    categories: Optional[list[str]] = None
    expected_version: Optional[int] = None


class VersionedRequest(BaseSchema):
    expected_version: Optional[int] = None


class ResubmitRequest(BaseSchema):
    reason: str = Field(..., min_length=1)
    changes: ClaimUpdate = ClaimUpdate()


class SecondaryClaimRequest(BaseSchema):
    adjustments: Decimal = Field(
        default=Decimal("0.00"), ge=0, description="Primary contractual adjustments"
    )
    patient_responsibility: Optional[Decimal] = Field(
        default=None, ge=0, description="Defaults to the balance left after the primary"
    )


class BatchScrubRequest(BaseSchema):
    claim_ids: list[uuid.UUID] = Field(..., min_length=1)
    auto_fix: bool = False
    categories: Optional[list[str]] = None


class StatusUpdateRequest(BaseSchema):
    status: str
    note: Optional[str] = None
    expected_version: Optional[int] = None


class PaymentRequest(BaseSchema):
    amount_paid: Decimal = Field(..., ge=0)
    check_number: Optional[str] = None
    era_number: Optional[str] = None
    paid_at: Optional[datetime] = None
    expected_version: Optional[int] = None


class DenialRequest(BaseSchema):
    reason: str = Field(..., min_length=1)
    code: Optional[str] = None
    expected_version: Optional[int] = None


# ── Responses ────────────────────────────────────────────────────────────────


class ClaimListItem(BaseSchema):
    """Compact row for claim listings."""

    id: uuid.UUID
    claim_number: str
    status: str
    patient_id: str
    provider_id: Optional[str]
    payer_id: Optional[str]
    service_date: Optional[date]
    total_charges: Decimal
    scrub_status: str
    last_scrub_date: Optional[datetime]
    submitted_at: Optional[datetime]
    created_at: datetime


class ClaimResponse(TimestampedSchema):
    """Full claim detail."""

    claim_number: str
    status: str
    version: int

    patient_id: str
    provider_id: Optional[str]
    payer_id: Optional[str]
    patient: dict[str, Any]
    provider: dict[str, Any]
    insurance: dict[str, Any]
    secondary_insurance: dict[str, Any]

    service_date: Optional[date]
    place_of_service: Optional[str]
    diagnosis_codes: list[str]
    procedures: list[dict[str, Any]]
    total_charges: Decimal
    notes: Optional[str]

    scrub_status: str
    last_scrub_date: Optional[datetime]
    scrub_error_count: int
    scrub_warning_count: int
    scrub_auto_fixed_count: int
    latest_report_id: Optional[uuid.UUID]

    submitted_by: Optional[str]
    submitted_at: Optional[datetime]
    tracking_number: Optional[str]

    amount_paid: Decimal
    payment_received_at: Optional[datetime]
    check_number: Optional[str]
    era_number: Optional[str]
    denial_reason: Optional[str]
    denial_code: Optional[str]

    original_claim_id: Optional[uuid.UUID]
    resubmission_reason: Optional[str]
    resubmission_count: int

    primary_claim_id: Optional[uuid.UUID]
    primary_paid_amount: Optional[Decimal]
    patient_responsibility: Decimal

    created_by: Optional[str]
    updated_by: Optional[str]


class SubmissionResponse(BaseSchema):
    claim: ClaimResponse
    within_timely_filing: bool
    days_until_deadline: Optional[int]


class DeadlineItem(BaseSchema):
    claim: ClaimListItem
    days_remaining: int


class StatsOverview(BaseSchema):
    total: int
    by_status: dict[str, int]
    by_scrub_status: dict[str, int]
    average_charges: float
    total_charges: float
    ready_to_submit: int
    needing_scrubbing: int


class SecondaryClaimResponse(BaseSchema):
    primary: ClaimResponse
    secondary: ClaimResponse
    amounts: dict[str, Decimal]


class SecondaryCheck(BaseSchema):
    check: str
    passed: bool
    message: str


class SecondaryReadiness(BaseSchema):
    claim_id: uuid.UUID
    claim_number: str
    status: str
    amount_paid: Decimal
    ready: bool
    checks: list[SecondaryCheck]
    days_remaining: int


class SecondaryLookup(BaseSchema):
    has_secondary: bool
    secondary: Optional[ClaimResponse] = None
