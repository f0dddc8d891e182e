"""
Claims API routes.

Workflow:
  POST   /claims                          → create draft claim
  GET    /claims                          → list (role-scoped, filtered, paginated)
  GET    /claims/{id}                     → claim detail
  PATCH  /claims/{id}                     → edit a draft
  DELETE /claims/{id}                     → delete a draft
  POST   /claims/{id}/scrub               → run the rule engine, persist a report
  POST   /claims/{id}/auto-fix            → apply every available fix, then scrub
  GET    /claims/{id}/reports             → scrub history
  GET    /claims/{id}/reports/latest      → most recent report
  POST   /claims/{id}/submit              → submit a scrubbed claim
  GET    /claims/{id}/pre-submit          → dry-run scrub gate, nothing stored
  POST   /claims/{id}/resubmit            → spawn a corrected draft
  POST   /claims/{id}/secondary           → spawn a claim for the secondary payer
  GET    /claims/{id}/secondary           → secondary claim filed for a primary
  GET    /claims/{id}/secondary/readiness → checks gating a secondary claim
  GET    /claims/secondary/ready          → paid claims awaiting a secondary
  POST   /claims/{id}/status|payment|denial → payer outcomes (billing staff)
  POST   /claims/batch/scrub              → scrub many claims (inline or queued)

Every response is wrapped as {"success": true, "data": ...}; errors are
rendered by the handlers in app/main.py.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.routers.auth import get_current_identity, require_role
from app.schemas.claim import (
    BatchScrubRequest,
    ClaimCreate,
    ClaimListItem,
    ClaimResponse,
    ClaimUpdate,
    DeadlineItem,
    DenialRequest,
    PaymentRequest,
    ResubmitRequest,
    ScrubRequest,
    SecondaryClaimRequest,
    SecondaryClaimResponse,
    SecondaryLookup,
    SecondaryReadiness,
    StatsOverview,
    StatusUpdateRequest,
    SubmissionResponse,
    VersionedRequest,
)
from app.schemas.common import Envelope, MessageResponse, Page, ok, paginate
from app.schemas.scrub import (
    AutoFixResponse,
    BatchClaimResultView,
    BatchQueuedResponse,
    BatchScrubResponse,
    PreSubmitResponse,
    ScrubReportListItem,
    ScrubReportResponse,
)
from app.services.claims.identity import Identity, UserRole
from app.services.claims.service import ClaimsService
from app.settings import settings
from app.workers.queue import enqueue_batch_scrub

router = APIRouter(prefix="/claims", tags=["claims"])


def get_claims_service(db: Session = Depends(get_db)) -> ClaimsService:
    return ClaimsService(db)


def _claim(claim) -> ClaimResponse:
    return ClaimResponse.model_validate(claim)


def _report(report) -> ScrubReportResponse:
    return ScrubReportResponse.model_validate(report)


# ── Claims ────────────────────────────────────────────────────────────────────


@router.post(
    "",
    response_model=Envelope[ClaimResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_claim(
    payload: ClaimCreate,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    claim = service.create_claim(payload.model_dump(exclude_unset=True), identity)
    return ok(_claim(claim))


@router.get("", response_model=Envelope[Page[ClaimListItem]])
def list_claims(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    patient_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    payer_id: Optional[str] = None,
    scrub_status: Optional[str] = None,
    service_date_from: Optional[date] = None,
    service_date_to: Optional[date] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.default_page_limit, ge=1),
    sort: str = "-created_at",
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    limit = min(limit, settings.max_page_limit)
    items, total = service.list_claims(
        identity,
        status=status_filter,
        patient_id=patient_id,
        provider_id=provider_id,
        payer_id=payer_id,
        scrub_status=scrub_status,
        service_date_from=service_date_from,
        service_date_to=service_date_to,
        page=page,
        limit=limit,
        sort=sort,
    )
    rows = [ClaimListItem.model_validate(c) for c in items]
    return ok(paginate(rows, total, page, limit))


# Static paths are declared before /{claim_id} so they are not captured by it


@router.get("/stats/overview", response_model=Envelope[StatsOverview])
def stats_overview(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(service.get_stats_overview(identity, start=start, end=end))


@router.get("/stats/approaching-deadline", response_model=Envelope[list[DeadlineItem]])
def approaching_deadline(
    days: int = Query(default=10, ge=1, le=365),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    pairs = service.get_claims_approaching_deadline(identity, days=days)
    return ok(
        [
            DeadlineItem(claim=ClaimListItem.model_validate(c), days_remaining=d)
            for c, d in pairs
        ]
    )


@router.get("/secondary/ready", response_model=Envelope[list[ClaimListItem]])
def ready_for_secondary(
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(
        require_role(UserRole.BILLING, UserRole.ADMIN, UserRole.PRACTITIONER)
    ),
):
    claims = service.list_ready_for_secondary(identity)
    return ok([ClaimListItem.model_validate(c) for c in claims])


@router.get(
    "/reports/needing-attention", response_model=Envelope[list[ScrubReportListItem]]
)
def reports_needing_attention(
    limit: int = Query(default=50, ge=1, le=200),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    reports = service.get_reports_needing_attention(identity, limit=limit)
    return ok([ScrubReportListItem.model_validate(r) for r in reports])


@router.get("/reports/statistics", response_model=Envelope[dict])
def report_statistics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(service.get_report_statistics(identity, start=start, end=end))


@router.get("/reports/{report_id}", response_model=Envelope[ScrubReportResponse])
def get_report(
    report_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(_report(service.get_report(report_id, identity)))


@router.get("/reports/{report_id}/compare", response_model=Envelope[dict])
def compare_report(
    report_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(service.compare_report_with_previous(report_id, identity))


@router.post("/batch/scrub", status_code=status.HTTP_200_OK)
def batch_scrub(
    payload: BatchScrubRequest,
    background: bool = False,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(require_role(UserRole.BILLING, UserRole.ADMIN)),
):
    """
    Scrub many claims. With ?background=true the batch is queued on the worker
    and only the job id is returned.
    """
    if background:
        job_id = enqueue_batch_scrub(
            [str(cid) for cid in payload.claim_ids],
            identity,
            auto_fix=payload.auto_fix,
            categories=payload.categories,
        )
        return ok(BatchQueuedResponse(job_id=job_id, queued=len(payload.claim_ids)))

    outcome = service.batch_scrub(
        payload.claim_ids,
        identity,
        auto_fix=payload.auto_fix,
        categories=payload.categories,
    )
    return ok(
        BatchScrubResponse(
            results=[BatchClaimResultView.model_validate(r) for r in outcome.results],
            summary=outcome.summary,
        )
    )


@router.get("/{claim_id}", response_model=Envelope[ClaimResponse])
def get_claim(
    claim_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(_claim(service.get_claim(claim_id, identity)))


@router.patch("/{claim_id}", response_model=Envelope[ClaimResponse])
def update_claim(
    claim_id: uuid.UUID,
    payload: ClaimUpdate,
    expected_version: Optional[int] = None,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    claim = service.update_claim(
        claim_id,
        payload.model_dump(exclude_unset=True),
        identity,
        expected_version=expected_version,
    )
    return ok(_claim(claim))


@router.delete("/{claim_id}", response_model=Envelope[MessageResponse])
def delete_claim(
    claim_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    service.delete_claim(claim_id, identity)
    return ok(MessageResponse(message="Claim deleted"))


# ── Scrubbing ─────────────────────────────────────────────────────────────────


@router.post("/{claim_id}/scrub", response_model=Envelope[ScrubReportResponse])
def scrub_claim(
    claim_id: uuid.UUID,
    payload: ScrubRequest = ScrubRequest(),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    report = service.scrub_claim(
        claim_id,
        identity,
        auto_fix=payload.auto_fix,
        categories=payload.categories,
        expected_version=payload.expected_version,
    )
    return ok(_report(report))


@router.post("/{claim_id}/auto-fix", response_model=Envelope[AutoFixResponse])
def auto_fix_claim(
    claim_id: uuid.UUID,
    payload: VersionedRequest = VersionedRequest(),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    outcome = service.auto_fix_claim(
        claim_id, identity, expected_version=payload.expected_version
    )
    return ok(
        AutoFixResponse(
            fixed=outcome.fixed,
            fixed_count=outcome.fixed_count,
            message=outcome.message,
            fixes=outcome.fixes,
            changes=outcome.changes,
            report=_report(outcome.report),
            claim=_claim(outcome.claim),
        )
    )


@router.get("/{claim_id}/reports", response_model=Envelope[Page[ScrubReportListItem]])
def list_reports(
    claim_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.default_page_limit, ge=1),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    limit = min(limit, settings.max_page_limit)
    reports, total = service.list_reports(claim_id, identity, page=page, limit=limit)
    rows = [ScrubReportListItem.model_validate(r) for r in reports]
    return ok(paginate(rows, total, page, limit))


@router.get("/{claim_id}/reports/latest", response_model=Envelope[ScrubReportResponse])
def latest_report(
    claim_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(_report(service.get_latest_report(claim_id, identity)))


# ── Submission ────────────────────────────────────────────────────────────────


@router.get("/{claim_id}/pre-submit", response_model=Envelope[PreSubmitResponse])
def pre_submit_validation(
    claim_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    check = service.pre_submit_validation(claim_id, identity)
    return ok(PreSubmitResponse.model_validate(check.to_dict()))


@router.post("/{claim_id}/submit", response_model=Envelope[SubmissionResponse])
def submit_claim(
    claim_id: uuid.UUID,
    payload: VersionedRequest = VersionedRequest(),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    result = service.submit_claim(
        claim_id, identity, expected_version=payload.expected_version
    )
    return ok(
        SubmissionResponse(
            claim=_claim(result.claim),
            within_timely_filing=result.within_timely_filing,
            days_until_deadline=result.days_until_deadline,
        )
    )


@router.post(
    "/{claim_id}/resubmit",
    response_model=Envelope[ClaimResponse],
    status_code=status.HTTP_201_CREATED,
)
def resubmit_claim(
    claim_id: uuid.UUID,
    payload: ResubmitRequest,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    new_claim = service.resubmit_claim(
        claim_id,
        identity,
        reason=payload.reason,
        changes=payload.changes.model_dump(exclude_unset=True),
    )
    return ok(_claim(new_claim))


# ── Payer outcomes ────────────────────────────────────────────────────────────


@router.post("/{claim_id}/status", response_model=Envelope[ClaimResponse])
def record_status(
    claim_id: uuid.UUID,
    payload: StatusUpdateRequest,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(require_role(UserRole.BILLING, UserRole.ADMIN)),
):
    claim = service.record_status(
        claim_id,
        identity,
        payload.status,
        note=payload.note,
        expected_version=payload.expected_version,
    )
    return ok(_claim(claim))


@router.post("/{claim_id}/payment", response_model=Envelope[ClaimResponse])
def record_payment(
    claim_id: uuid.UUID,
    payload: PaymentRequest,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(require_role(UserRole.BILLING, UserRole.ADMIN)),
):
    claim = service.mark_paid(
        claim_id,
        identity,
        amount_paid=payload.amount_paid,
        check_number=payload.check_number,
        era_number=payload.era_number,
        paid_at=payload.paid_at,
        expected_version=payload.expected_version,
    )
    return ok(_claim(claim))


@router.post("/{claim_id}/denial", response_model=Envelope[ClaimResponse])
def record_denial(
    claim_id: uuid.UUID,
    payload: DenialRequest,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(require_role(UserRole.BILLING, UserRole.ADMIN)),
):
    claim = service.mark_denied(
        claim_id,
        identity,
        reason=payload.reason,
        code=payload.code,
        expected_version=payload.expected_version,
    )
    return ok(_claim(claim))


# ── Coordination of benefits ──────────────────────────────────────────────────


@router.post(
    "/{claim_id}/secondary",
    response_model=Envelope[SecondaryClaimResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_secondary_claim(
    claim_id: uuid.UUID,
    payload: SecondaryClaimRequest = SecondaryClaimRequest(),
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(
        require_role(UserRole.BILLING, UserRole.ADMIN, UserRole.PRACTITIONER)
    ),
):
    result = service.create_secondary_claim(
        claim_id,
        identity,
        adjustments=payload.adjustments,
        patient_responsibility=payload.patient_responsibility,
    )
    return ok(
        SecondaryClaimResponse(
            primary=_claim(result.primary),
            secondary=_claim(result.secondary),
            amounts=result.amounts,
        )
    )


@router.get("/{claim_id}/secondary", response_model=Envelope[SecondaryLookup])
def get_secondary_claim(
    claim_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    secondary = service.get_secondary_claim(claim_id, identity)
    return ok(
        SecondaryLookup(
            has_secondary=secondary is not None,
            secondary=_claim(secondary) if secondary is not None else None,
        )
    )


@router.get(
    "/{claim_id}/secondary/readiness", response_model=Envelope[SecondaryReadiness]
)
def secondary_readiness(
    claim_id: uuid.UUID,
    service: ClaimsService = Depends(get_claims_service),
    identity: Identity = Depends(get_current_identity),
):
    return ok(SecondaryReadiness(**service.get_secondary_readiness(claim_id, identity)))
