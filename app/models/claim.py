"""
Claim-side entities: Claim, ClaimNumberSequence.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONPortable, TimestampMixin, UUIDPrimaryKeyMixin


# ── Lifecycle state constants ────────────────────────────────────────────────


class ClaimStatus:
    DRAFT = "draft"
    READY = "ready"
    SUBMITTED = "submitted"
    PENDING = "pending"
    PROCESSING = "processing"
    ACCEPTED = "accepted"
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    DENIED = "denied"
    APPEALED = "appealed"
    PAID = "paid"
    CLOSED = "closed"

    # Scrubbing and auto-fix are only allowed before the claim leaves the practice
    PRE_SUBMISSION = {DRAFT, READY}

    # A resubmission may only be spawned from these
    RESUBMITTABLE = {SUBMITTED, DENIED, APPEALED}


class ScrubStatus:
    NOT_SCRUBBED = "not_scrubbed"
    PASS = "pass"
    PASS_WITH_WARNINGS = "pass_with_warnings"
    FAIL = "fail"
    FIXED = "fixed"

    # Scrub outcomes that allow submission
    SUBMITTABLE = {PASS, PASS_WITH_WARNINGS, FIXED}

    NEEDS_SCRUBBING = {NOT_SCRUBBED, FAIL}


# Fields whose edit invalidates the last scrub run
BILLING_FIELDS = frozenset({"diagnosis_codes", "procedures", "insurance"})


# ── Models ───────────────────────────────────────────────────────────────────


class Claim(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    A billing submission requesting reimbursement for rendered services.

    Patient, provider and insurance details are stored as JSON blocks exactly
    as the rule engine consumes them; the ids used for access scoping and list
    filters are denormalised into indexed columns.

    `version` is the optimistic-lock counter: a flush that finds the row at a
    different version raises StaleDataError instead of overwriting it.
    """

    __tablename__ = "claims"

    claim_number: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, index=True
    )

    # ── Lifecycle ─────────────────────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ClaimStatus.DRAFT,
        index=True,
    )

    # ── Parties ───────────────────────────────────────────────────────────────
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    payer_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    patient: Mapped[dict] = mapped_column(JSONPortable, nullable=False, default=dict)
    provider: Mapped[dict] = mapped_column(JSONPortable, nullable=False, default=dict)
    insurance: Mapped[dict] = mapped_column(JSONPortable, nullable=False, default=dict)
    secondary_insurance: Mapped[dict] = mapped_column(
        JSONPortable,
        nullable=False,
        default=dict,
        comment="{payer_id, payer_name, policy_number, group_number, plan_name, timely_filing_limit}",
    )

    # ── Service ───────────────────────────────────────────────────────────────
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    place_of_service: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    diagnosis_codes: Mapped[list] = mapped_column(
        JSONPortable, nullable=False, default=list
    )
    procedures: Mapped[list] = mapped_column(
        JSONPortable,
        nullable=False,
        default=list,
        comment="[{code, description, charge, units, modifiers, diagnosis_pointers, service_date}]",
    )
    total_charges: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Scrubbing bookkeeping (written only by scrub runs) ────────────────────
    scrub_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ScrubStatus.NOT_SCRUBBED,
        index=True,
    )
    last_scrub_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scrub_error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scrub_warning_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scrub_auto_fixed_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    # Not a FK: scrub_reports already references claims, and the pointer is
    # last-write-wins across concurrent scrubs of the same claim.
    latest_report_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )

    # ── Submission ────────────────────────────────────────────────────────────
    submitted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )

    # ── Adjudication / payment ────────────────────────────────────────────────
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    payment_received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    check_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    era_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    denial_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    denial_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # ── Resubmission lineage ──────────────────────────────────────────────────
    original_claim_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    resubmission_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resubmission_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Coordination of benefits ──────────────────────────────────────────────
    # Set on a secondary claim; points at the paid primary it was spawned from
    primary_claim_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    primary_paid_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    patient_responsibility: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )

    # ── Authorship ────────────────────────────────────────────────────────────
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Claim claim_number={self.claim_number!r} status={self.status!r}>"


class ClaimNumberSequence(Base):
    """
    Atomic per-period counter behind claim numbering.
    One row per UTC day; `last_value` is the last sequence handed out.
    """

    __tablename__ = "claim_number_sequences"

    period: Mapped[str] = mapped_column(String(8), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ClaimNumberSequence period={self.period!r} last={self.last_value}>"
