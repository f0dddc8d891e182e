"""
Claim lifecycle: status transitions and their guards.

No rule evaluation happens here and nothing is persisted: the functions take a
Claim, check that a move is legal, and set the lifecycle fields. The claims
service owns the session and the audit trail.

    draft ──scrub──▶ ready ──submit──▶ submitted ──▶ pending / processing
                                          │                │
                                          ▼                ▼
                       accepted / approved / partially_approved / denied
                                          │                     │
                                          ▼                     ▼
                                        paid ──▶ closed      appealed ──▶ (re-adjudicated)
"""

import copy
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from app.models.claim import Claim, ClaimStatus, ScrubStatus
from app.services.claims.errors import BadRequestError

logger = logging.getLogger(__name__)

S = ClaimStatus

TRANSITIONS: dict[str, set[str]] = {
    S.DRAFT: {S.READY, S.SUBMITTED},
    S.READY: {S.SUBMITTED},
    S.SUBMITTED: {
        S.PENDING,
        S.PROCESSING,
        S.ACCEPTED,
        S.APPROVED,
        S.PARTIALLY_APPROVED,
        S.DENIED,
    },
    S.PENDING: {S.PROCESSING, S.ACCEPTED, S.APPROVED, S.PARTIALLY_APPROVED, S.DENIED},
    S.PROCESSING: {S.ACCEPTED, S.APPROVED, S.PARTIALLY_APPROVED, S.DENIED},
    S.ACCEPTED: {S.APPROVED, S.PARTIALLY_APPROVED, S.DENIED, S.PAID},
    S.APPROVED: {S.PAID},
    S.PARTIALLY_APPROVED: {S.PAID, S.APPEALED},
    S.DENIED: {S.APPEALED, S.CLOSED},
    S.APPEALED: {S.APPROVED, S.PARTIALLY_APPROVED, S.DENIED},
    S.PAID: {S.CLOSED},
    S.CLOSED: set(),
}

# Statuses a payer response may move a claim into via record_status().
# paid carries payment details and goes through mark_paid() instead.
PAYER_OUTCOMES = {
    S.PENDING,
    S.PROCESSING,
    S.ACCEPTED,
    S.APPROVED,
    S.PARTIALLY_APPROVED,
    S.DENIED,
    S.APPEALED,
    S.CLOSED,
}

# Copied from the original claim onto a resubmission
RESUBMISSION_FIELDS = (
    "patient_id",
    "provider_id",
    "payer_id",
    "patient",
    "provider",
    "insurance",
    "secondary_insurance",
    "service_date",
    "place_of_service",
    "diagnosis_codes",
    "procedures",
    "total_charges",
    "notes",
)

del S


# ── Guards ───────────────────────────────────────────────────────────────────


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def ensure_transition(claim: Claim, to_status: str) -> None:
    if not can_transition(claim.status, to_status):
        raise BadRequestError(
            f"Cannot move claim {claim.claim_number} from {claim.status} to {to_status}",
            details={
                "from_status": claim.status,
                "to_status": to_status,
                "allowed": sorted(TRANSITIONS.get(claim.status, set())),
            },
        )


# Columns a change set may not blank out
REQUIRED_FIELDS = {"patient_id": "Patient reference is required"}


def ensure_required_present(changes: dict[str, Any]) -> None:
    missing = [
        {"field": name, "message": message}
        for name, message in REQUIRED_FIELDS.items()
        if name in changes and not changes[name]
    ]
    if missing:
        raise BadRequestError("Claim is missing required data", details=missing)


def ensure_editable(claim: Claim) -> None:
    if claim.status != ClaimStatus.DRAFT:
        raise BadRequestError(
            f"Claim {claim.claim_number} is {claim.status}; only draft claims can be edited",
            details={"status": claim.status},
        )


def ensure_deletable(claim: Claim) -> None:
    if claim.status != ClaimStatus.DRAFT:
        raise BadRequestError(
            f"Claim {claim.claim_number} is {claim.status}; only draft claims can be deleted",
            details={"status": claim.status},
        )


def ensure_scrubbable(claim: Claim) -> None:
    if claim.status not in ClaimStatus.PRE_SUBMISSION:
        raise BadRequestError(
            f"Claim {claim.claim_number} is {claim.status}; "
            "only draft or ready claims can be scrubbed",
            details={"status": claim.status},
        )


def is_ready_for_submission(claim: Claim) -> bool:
    return (
        claim.status in ClaimStatus.PRE_SUBMISSION
        and claim.scrub_status in ScrubStatus.SUBMITTABLE
    )


def ensure_ready_for_submission(claim: Claim) -> None:
    if claim.status not in ClaimStatus.PRE_SUBMISSION:
        raise BadRequestError(
            f"Claim {claim.claim_number} has already been submitted",
            details={"status": claim.status},
        )
    if claim.scrub_status not in ScrubStatus.SUBMITTABLE:
        raise BadRequestError(
            "Claim must pass scrubbing before submission",
            details={
                "scrub_status": claim.scrub_status,
                "errors": claim.scrub_error_count,
            },
        )


# ── Timely filing ────────────────────────────────────────────────────────────


def filing_limit_days(claim: Claim, default_limit: int) -> int:
    override = (claim.insurance or {}).get("timely_filing_limit")
    if isinstance(override, int) and not isinstance(override, bool) and override > 0:
        return override
    return default_limit


def timely_filing_deadline(claim: Claim, default_limit: int) -> Optional[date]:
    if claim.service_date is None:
        return None
    return claim.service_date + timedelta(days=filing_limit_days(claim, default_limit))


def days_until_timely_filing(
    claim: Claim, today: date, default_limit: int
) -> Optional[int]:
    """Days left before the filing deadline; negative once it has passed."""
    deadline = timely_filing_deadline(claim, default_limit)
    if deadline is None:
        return None
    return (deadline - today).days


def is_within_timely_filing(claim: Claim, today: date, default_limit: int) -> bool:
    remaining = days_until_timely_filing(claim, today, default_limit)
    return remaining is not None and remaining >= 0


# ── Transitions ──────────────────────────────────────────────────────────────


def apply_scrub_outcome(claim: Claim, scrub_status: str) -> str:
    """
    Record a scrub run's status on the claim and promote it to ready when the
    run allows submission. A failing run leaves the lifecycle status alone.
    Returns the resulting claim status.
    """
    claim.scrub_status = scrub_status
    if scrub_status in ScrubStatus.SUBMITTABLE and claim.status == ClaimStatus.DRAFT:
        claim.status = ClaimStatus.READY
    return claim.status


def mark_submitted(
    claim: Claim, *, tracking_number: str, submitted_by: str, now: datetime
) -> None:
    ensure_ready_for_submission(claim)
    claim.status = ClaimStatus.SUBMITTED
    claim.tracking_number = tracking_number
    claim.submitted_at = now
    claim.submitted_by = submitted_by
    claim.updated_by = submitted_by


def record_outcome(claim: Claim, to_status: str, actor_id: str) -> str:
    if to_status not in PAYER_OUTCOMES:
        raise BadRequestError(
            f"{to_status!r} is not a payer outcome status",
            details={"allowed": sorted(PAYER_OUTCOMES)},
        )
    ensure_transition(claim, to_status)
    from_status = claim.status
    claim.status = to_status
    claim.updated_by = actor_id
    return from_status


def mark_paid(
    claim: Claim,
    *,
    amount_paid: Decimal,
    actor_id: str,
    paid_at: datetime,
    check_number: Optional[str] = None,
    era_number: Optional[str] = None,
) -> str:
    ensure_transition(claim, ClaimStatus.PAID)
    if amount_paid < 0:
        raise BadRequestError("Paid amount cannot be negative")
    from_status = claim.status
    claim.status = ClaimStatus.PAID
    claim.amount_paid = amount_paid
    claim.payment_received_at = paid_at
    claim.check_number = check_number
    claim.era_number = era_number
    claim.updated_by = actor_id
    return from_status


def mark_denied(
    claim: Claim, *, reason: str, actor_id: str, code: Optional[str] = None
) -> str:
    ensure_transition(claim, ClaimStatus.DENIED)
    if not reason or not reason.strip():
        raise BadRequestError("A denial reason is required")
    from_status = claim.status
    claim.status = ClaimStatus.DENIED
    claim.denial_reason = reason
    claim.denial_code = code
    claim.updated_by = actor_id
    return from_status


def build_resubmission(
    original: Claim,
    *,
    claim_number: str,
    reason: str,
    changes: dict[str, Any],
    actor_id: str,
) -> Claim:
    """
    New draft claim carrying the original's billing data plus `changes`.
    The original is read, never written. Scrub history starts over.
    """
    if original.status not in ClaimStatus.RESUBMITTABLE:
        raise BadRequestError(
            f"Claim {original.claim_number} is {original.status}; only submitted, "
            "denied or appealed claims can be resubmitted",
            details={"status": original.status},
        )
    if not reason or not reason.strip():
        raise BadRequestError("A resubmission reason is required")

    unknown = sorted(set(changes) - set(RESUBMISSION_FIELDS))
    if unknown:
        raise BadRequestError(
            "Resubmission changes contain fields that cannot be set",
            details={"fields": unknown},
        )
    ensure_required_present(changes)

    values = {
        name: copy.deepcopy(getattr(original, name)) for name in RESUBMISSION_FIELDS
    }
    values.update(changes)
    if "insurance" in changes:
        values["payer_id"] = (changes["insurance"] or {}).get("payer_id")

    logger.info(
        "Building resubmission of %s (%d changed field(s))",
        original.claim_number,
        len(changes),
    )
    return Claim(
        **values,
        claim_number=claim_number,
        status=ClaimStatus.DRAFT,
        scrub_status=ScrubStatus.NOT_SCRUBBED,
        original_claim_id=original.id,
        resubmission_reason=reason,
        resubmission_count=(original.resubmission_count or 0) + 1,
        created_by=actor_id,
        updated_by=actor_id,
    )


# ── Coordination of benefits ─────────────────────────────────────────────────

# Secondary coverage block -> insurance block of the spawned secondary claim
SECONDARY_INSURANCE_FIELDS = (
    "payer_id",
    "payer_name",
    "policy_number",
    "group_number",
    "plan_type",
    "plan_name",
    "relationship_to_insured",
    "timely_filing_limit",
)


def has_secondary_insurance(claim: Claim) -> bool:
    return bool((claim.secondary_insurance or {}).get("payer_id"))


def secondary_amounts(
    primary: Claim,
    *,
    adjustments: Decimal = Decimal("0.00"),
    patient_responsibility: Optional[Decimal] = None,
) -> dict[str, Decimal]:
    """
    Balance left for the secondary payer after the primary's payment.
    allowed = charges - |contractual adjustments|; the remaining balance is
    allowed - primary paid, floored at zero.
    """
    charges = primary.total_charges or Decimal("0.00")
    paid = primary.amount_paid or Decimal("0.00")
    allowed = charges - abs(adjustments)
    remaining = max(Decimal("0.00"), allowed - paid)
    return {
        "total_charges": charges,
        "primary_paid": paid,
        "adjustments": abs(adjustments),
        "allowed_amount": allowed,
        "remaining_balance": remaining,
        "patient_responsibility": (
            remaining if patient_responsibility is None else patient_responsibility
        ),
    }


def secondary_readiness(
    primary: Claim,
    *,
    secondary_filed: bool,
    today: date,
    default_limit: int,
) -> dict[str, Any]:
    """
    Checks that gate spawning a secondary claim. Every check is reported,
    passed or not, so callers can show the full list.
    """
    checks: list[dict[str, Any]] = []

    def check(name: str, passed: bool, message: str) -> None:
        checks.append({"check": name, "passed": passed, "message": message})

    check(
        "has_secondary_insurance",
        has_secondary_insurance(primary),
        "Secondary insurance on file"
        if has_secondary_insurance(primary)
        else "No secondary insurance on file",
    )
    paid = primary.status == ClaimStatus.PAID
    check(
        "primary_paid",
        paid,
        "Primary claim paid" if paid else f"Primary claim is {primary.status}, not paid",
    )
    check(
        "secondary_not_filed",
        not secondary_filed,
        "Secondary claim already filed" if secondary_filed else "No secondary claim filed",
    )

    limit = default_limit
    override = (primary.secondary_insurance or {}).get("timely_filing_limit")
    if isinstance(override, int) and not isinstance(override, bool) and override > 0:
        limit = override
    # The secondary payer's clock starts when the primary pays
    paid_on = primary.payment_received_at.date() if primary.payment_received_at else today
    elapsed = (today - paid_on).days
    within = elapsed <= limit
    check(
        "timely_filing",
        within,
        f"{'Within' if within else 'Past'} timely filing ({elapsed}/{limit} days)",
    )

    return {
        "ready": all(c["passed"] for c in checks),
        "checks": checks,
        "days_remaining": max(0, limit - elapsed),
    }


def build_secondary(
    primary: Claim,
    *,
    claim_number: str,
    amounts: dict[str, Decimal],
    actor_id: str,
) -> Claim:
    """
    New draft claim billed to the primary's secondary payer.

    Charges and service lines are carried over unchanged; the primary's
    payment travels in primary_paid_amount. The primary is not written.
    """
    if not has_secondary_insurance(primary):
        raise BadRequestError(
            f"Claim {primary.claim_number} has no secondary insurance on file"
        )
    if primary.status != ClaimStatus.PAID:
        raise BadRequestError(
            f"Claim {primary.claim_number} is {primary.status}; the primary payer "
            "must pay before a secondary claim is filed",
            details={"status": primary.status},
        )

    coverage = primary.secondary_insurance or {}
    insurance = {
        name: coverage[name] for name in SECONDARY_INSURANCE_FIELDS if name in coverage
    }
    logger.info(
        "Building secondary claim of %s for payer %s",
        primary.claim_number,
        insurance.get("payer_id"),
    )
    return Claim(
        patient_id=primary.patient_id,
        provider_id=primary.provider_id,
        payer_id=insurance.get("payer_id"),
        patient=copy.deepcopy(primary.patient),
        provider=copy.deepcopy(primary.provider),
        insurance=insurance,
        secondary_insurance={},
        service_date=primary.service_date,
        place_of_service=primary.place_of_service,
        diagnosis_codes=list(primary.diagnosis_codes or []),
        procedures=copy.deepcopy(primary.procedures),
        total_charges=amounts["total_charges"],
        notes=(
            f"Secondary claim for primary claim {primary.claim_number}. "
            f"Primary paid: ${amounts['primary_paid']}"
        ),
        claim_number=claim_number,
        status=ClaimStatus.DRAFT,
        scrub_status=ScrubStatus.NOT_SCRUBBED,
        primary_claim_id=primary.id,
        primary_paid_amount=amounts["primary_paid"],
        patient_responsibility=amounts["patient_responsibility"],
        created_by=actor_id,
        updated_by=actor_id,
    )
