"""
Claims Service: orchestrates scrubbing, persistence and lifecycle moves.

Flow for every scrub:
  1. Load the claim and check the caller may act on it
  2. Snapshot it to a plain dict and hand it to the ClaimScrubber (pure)
  3. Persist one ScrubReport per run, linked to the claim's previous report
  4. Update the claim's scrubbing bookkeeping and lifecycle status
  5. Write an audit event, then commit

Collaborators are injected at construction with explicit defaults:
    service = ClaimsService(db)                                    # production
    service = ClaimsService(db, audit=NullAuditSink(),
                            rule_context_factory=lambda: ctx)      # tests

Each public mutating method commits. Stale writes detected by the claim's
version column surface as ConflictError.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from threading import Event
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models.claim import BILLING_FIELDS, Claim, ClaimStatus, ScrubStatus
from app.models.scrub_report import ReportAction, ScrubReport
from app.services.audit import logger as audit_log
from app.services.audit.logger import AuditSink, DatabaseAuditSink
from app.services.claims import lifecycle
from app.services.claims.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from app.services.claims.identity import Identity
from app.services.claims.numbering import (
    allocate_claim_number,
    generate_tracking_number,
    new_tracking_token,
)
from app.services.scrubbing.engine import ClaimScrubber, PreSubmitCheck, ScrubResult
from app.services.scrubbing.reports import (
    attention_sort_key,
    compare_reports,
    report_statistics,
)
from app.services.scrubbing.rules import RuleCategory, RuleContext, procedure_line_sum
from app.services.serialization import json_safe
from app.settings import settings

logger = logging.getLogger(__name__)

JSON_FIELDS = {
    "patient",
    "provider",
    "insurance",
    "secondary_insurance",
    "diagnosis_codes",
    "procedures",
}

EDITABLE_FIELDS = (
    "patient_id",
    "provider_id",
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

# Fields a scrub with auto-fix may write back onto the claim
FIXABLE_FIELDS = (
    "patient",
    "provider",
    "insurance",
    "diagnosis_codes",
    "procedures",
    "total_charges",
)

SORTABLE_FIELDS = {
    "created_at": Claim.created_at,
    "updated_at": Claim.updated_at,
    "service_date": Claim.service_date,
    "total_charges": Claim.total_charges,
    "claim_number": Claim.claim_number,
    "status": Claim.status,
}

SCRUBBABLE_CATEGORIES = [c for c in RuleCategory.ORDER if c != RuleCategory.SYSTEM]


# ── Snapshot helpers ──────────────────────────────────────────────────────────


def claim_to_snapshot(claim: Claim) -> dict[str, Any]:
    """Plain-dict view of a claim, the only input the rule engine sees."""
    return {
        "id": str(claim.id) if claim.id else None,
        "claim_number": claim.claim_number,
        "patient_id": claim.patient_id,
        "provider_id": claim.provider_id,
        "patient": copy.deepcopy(claim.patient or {}),
        "provider": copy.deepcopy(claim.provider or {}),
        "insurance": copy.deepcopy(claim.insurance or {}),
        "service_date": claim.service_date,
        "place_of_service": claim.place_of_service,
        "diagnosis_codes": list(claim.diagnosis_codes or []),
        "procedures": copy.deepcopy(claim.procedures or []),
        "total_charges": claim.total_charges,
    }


def apply_snapshot(claim: Claim, snapshot: dict[str, Any]) -> list[str]:
    """Write auto-fixed values back onto the claim. Returns the fields that changed."""
    changed: list[str] = []
    for name in FIXABLE_FIELDS:
        value = _normalise(name, snapshot.get(name))
        if getattr(claim, name) != value:
            setattr(claim, name, value)
            changed.append(name)
    if "insurance" in changed:
        claim.payer_id = (claim.insurance or {}).get("payer_id")
    return changed


def _normalise(name: str, value: Any) -> Any:
    if name in JSON_FIELDS:
        default: Any = [] if name in ("diagnosis_codes", "procedures") else {}
        return json_safe(value) if value is not None else default
    if name == "total_charges":
        return Decimal(str(value or 0)).quantize(Decimal("0.01"))
    return value


def _parse_uuid(value: Any, what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"{what} {value} not found")


# ── Result types ──────────────────────────────────────────────────────────────


@dataclass
class SubmissionResult:
    claim: Claim
    within_timely_filing: bool
    days_until_deadline: Optional[int]


@dataclass
class AutoFixOutcome:
    fixed: bool
    fixed_count: int
    message: str
    report: ScrubReport
    claim: Claim
    fixes: list[dict] = field(default_factory=list)
    changes: list[dict] = field(default_factory=list)


@dataclass
class SecondaryClaimResult:
    primary: Claim
    secondary: Claim
    amounts: dict[str, Decimal]


@dataclass
class BatchClaimResult:
    claim_id: str
    claim_number: Optional[str] = None
    status: Optional[str] = None
    report_id: Optional[uuid.UUID] = None
    error: Optional[str] = None
    cancelled: bool = False


@dataclass
class BatchScrubOutcome:
    results: list[BatchClaimResult]
    summary: dict[str, Any]


# ── Service ───────────────────────────────────────────────────────────────────


class ClaimsService:
    def __init__(
        self,
        db: Session,
        *,
        scrubber: Optional[ClaimScrubber] = None,
        audit: Optional[AuditSink] = None,
        rule_context_factory: Optional[Callable[[], RuleContext]] = None,
    ):
        self.db = db
        self.scrubber = scrubber or ClaimScrubber()
        self.audit = audit if audit is not None else DatabaseAuditSink(db)
        self.rule_context_factory = rule_context_factory or (
            lambda: RuleContext.from_settings(today=self._now().date())
        )

    # ── Plumbing ──────────────────────────────────────────────────────────────

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConflictError(
                "Claim was modified by another request; reload and retry"
            ) from exc

    def _flush(self) -> None:
        # Rollback is left to the caller: this may run inside a SAVEPOINT
        try:
            self.db.flush()
        except StaleDataError as exc:
            raise ConflictError(
                "Claim was modified by another request; reload and retry"
            ) from exc

    @staticmethod
    def _check_version(claim: Claim, expected_version: Optional[int]) -> None:
        if expected_version is not None and claim.version != expected_version:
            raise ConflictError(
                f"Claim {claim.claim_number} is at version {claim.version}, "
                f"not {expected_version}",
                details={"current_version": claim.version},
            )

    # ── Access control ────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_access(claim: Claim, identity: Identity) -> None:
        if identity.is_patient and claim.patient_id != identity.user_id:
            raise ForbiddenError("Patients may only access their own claims")
        if identity.is_practitioner and claim.provider_id != identity.user_id:
            raise ForbiddenError(
                "Practitioners may only access claims they are the provider on"
            )

    @staticmethod
    def _ensure_staff(identity: Identity) -> None:
        if not identity.is_staff:
            raise ForbiddenError("Only billing staff may record payer outcomes")

    @staticmethod
    def _scope(identity: Identity) -> list:
        if identity.is_patient:
            return [Claim.patient_id == identity.user_id]
        if identity.is_practitioner:
            return [Claim.provider_id == identity.user_id]
        return []

    def _load(self, claim_id: Any, identity: Identity) -> Claim:
        claim = self.db.get(Claim, _parse_uuid(claim_id, "Claim"))
        if claim is None:
            raise NotFoundError(f"Claim {claim_id} not found")
        self._ensure_access(claim, identity)
        return claim

    def _load_report(self, report_id: Any, identity: Identity) -> ScrubReport:
        report = self.db.get(ScrubReport, _parse_uuid(report_id, "Scrub report"))
        if report is None:
            raise NotFoundError(f"Scrub report {report_id} not found")
        self._load(report.claim_id, identity)
        return report

    # ── CRUD ──────────────────────────────────────────────────────────────────

    def create_claim(self, data: dict[str, Any], identity: Identity) -> Claim:
        missing: list[dict[str, str]] = []
        if not data.get("patient_id"):
            missing.append({"field": "patient_id", "message": "Patient reference is required"})
        if not data.get("diagnosis_codes") and not data.get("procedures"):
            missing.append(
                {
                    "field": "diagnosis_codes",
                    "message": "At least one diagnosis code or procedure line is required",
                }
            )
        if missing:
            raise BadRequestError("Claim is missing required data", details=missing)

        if identity.is_patient and data["patient_id"] != identity.user_id:
            raise ForbiddenError("Patients may only create claims for themselves")
        if identity.is_practitioner:
            provider_id = data.get("provider_id") or identity.user_id
            if provider_id != identity.user_id:
                raise ForbiddenError("Practitioners may only create claims they provide")
            data = {**data, "provider_id": provider_id}

        values = {
            name: _normalise(name, data.get(name))
            for name in EDITABLE_FIELDS
            if name in data
        }
        if data.get("total_charges") is None:
            values["total_charges"] = procedure_line_sum(
                {"procedures": values.get("procedures", [])}
            )

        claim = Claim(
            **values,
            claim_number=allocate_claim_number(self.db, self._now()),
            status=ClaimStatus.DRAFT,
            scrub_status=ScrubStatus.NOT_SCRUBBED,
            payer_id=(values.get("insurance") or {}).get("payer_id"),
            created_by=identity.user_id,
            updated_by=identity.user_id,
        )
        self.db.add(claim)
        self._flush()
        audit_log.log_claim_created(self.audit, claim, identity)
        self._commit()
        logger.info("Created claim %s for patient %s", claim.claim_number, claim.patient_id)
        return claim

    def list_claims(
        self,
        identity: Identity,
        *,
        status: Optional[str] = None,
        patient_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        scrub_status: Optional[str] = None,
        service_date_from: Optional[date] = None,
        service_date_to: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort: str = "-created_at",
    ) -> tuple[list[Claim], int]:
        if page < 1:
            raise BadRequestError("page must be >= 1")
        limit = min(limit or settings.default_page_limit, settings.max_page_limit)
        if limit < 1:
            raise BadRequestError("limit must be >= 1")

        descending = sort.startswith("-")
        sort_column = SORTABLE_FIELDS.get(sort.lstrip("-"))
        if sort_column is None:
            raise BadRequestError(
                f"Cannot sort by {sort.lstrip('-')!r}",
                details={"sortable": sorted(SORTABLE_FIELDS)},
            )

        conditions = self._scope(identity)
        if status:
            conditions.append(Claim.status == status)
        if patient_id:
            conditions.append(Claim.patient_id == patient_id)
        if provider_id:
            conditions.append(Claim.provider_id == provider_id)
        if payer_id:
            conditions.append(Claim.payer_id == payer_id)
        if scrub_status:
            conditions.append(Claim.scrub_status == scrub_status)
        if service_date_from:
            conditions.append(Claim.service_date >= service_date_from)
        if service_date_to:
            conditions.append(Claim.service_date <= service_date_to)

        total = self.db.scalar(select(func.count(Claim.id)).where(*conditions)) or 0
        # claim_number breaks ties between rows created in the same second
        order = (
            [sort_column.desc(), Claim.claim_number.desc()]
            if descending
            else [sort_column.asc(), Claim.claim_number.asc()]
        )
        items = self.db.scalars(
            select(Claim)
            .where(*conditions)
            .order_by(*order)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return list(items), total

    def get_claim(self, claim_id: Any, identity: Identity) -> Claim:
        return self._load(claim_id, identity)

    def update_claim(
        self,
        claim_id: Any,
        data: dict[str, Any],
        identity: Identity,
        *,
        expected_version: Optional[int] = None,
    ) -> Claim:
        claim = self._load(claim_id, identity)
        lifecycle.ensure_editable(claim)
        self._check_version(claim, expected_version)

        unknown = sorted(set(data) - set(EDITABLE_FIELDS))
        if unknown:
            raise BadRequestError(
                "These fields cannot be edited", details={"fields": unknown}
            )
        lifecycle.ensure_required_present(data)
        if (
            identity.is_patient
            and data.get("patient_id", claim.patient_id) != identity.user_id
        ):
            raise ForbiddenError("Patients may not reassign a claim")
        if (
            identity.is_practitioner
            and data.get("provider_id", claim.provider_id) != identity.user_id
        ):
            raise ForbiddenError("Practitioners may not reassign a claim")

        changed: list[str] = []
        for name, raw in data.items():
            value = _normalise(name, raw)
            if getattr(claim, name) != value:
                setattr(claim, name, value)
                changed.append(name)

        if not changed:
            return claim

        if "insurance" in changed:
            claim.payer_id = (claim.insurance or {}).get("payer_id")
        if BILLING_FIELDS.intersection(changed):
            # Billing edits invalidate the last scrub
            claim.scrub_status = ScrubStatus.NOT_SCRUBBED
        claim.updated_by = identity.user_id

        self._flush()
        audit_log.log_claim_updated(self.audit, claim, identity, changed)
        self._commit()
        return claim

    def delete_claim(self, claim_id: Any, identity: Identity) -> None:
        claim = self._load(claim_id, identity)
        lifecycle.ensure_deletable(claim)

        audit_log.log_claim_deleted(self.audit, claim, identity)
        self.db.execute(delete(ScrubReport).where(ScrubReport.claim_id == claim.id))
        self.db.delete(claim)
        self._commit()
        logger.info("Deleted draft claim %s", claim.claim_number)

    # ── Scrubbing ─────────────────────────────────────────────────────────────

    def _validate_categories(self, categories: Optional[Sequence[str]]) -> Optional[list[str]]:
        if not categories:
            return None
        invalid = [c for c in categories if c not in SCRUBBABLE_CATEGORIES]
        if invalid:
            raise BadRequestError(
                "Unknown rule categories",
                details={"invalid": invalid, "allowed": SCRUBBABLE_CATEGORIES},
            )
        return list(categories)

    def _persist_scrub(
        self,
        claim: Claim,
        result: ScrubResult,
        identity: Identity,
        *,
        snapshot: dict[str, Any],
        auto_fix: bool,
        categories: Optional[list[str]],
        actions: Sequence[str],
        event_type: str = "claim.scrubbed",
    ) -> ScrubReport:
        now = self._now()
        from_status = claim.status

        if auto_fix and result.fixed_issues:
            apply_snapshot(claim, result.claim)

        report = ScrubReport(
            id=uuid.uuid4(),
            claim_id=claim.id,
            claim_number=claim.claim_number,
            status=result.status,
            errors=json_safe([i.to_dict() for i in result.errors]),
            warnings=json_safe([i.to_dict() for i in result.warnings]),
            info=json_safe([i.to_dict() for i in result.info]),
            fixed_issues=json_safe([f.to_dict() for f in result.fixed_issues]),
            summary=result.summary.to_dict(),
            categories=[c.to_dict() for c in result.categories],
            config={"auto_fix": auto_fix, "categories": categories},
            duration_ms=result.duration_ms,
            scrubbed_by=identity.user_id,
            scrubbed_at=now,
            claim_snapshot=json_safe(snapshot),
            actions=json_safe(
                [
                    {"action": a, "performed_by": identity.user_id, "performed_at": now}
                    for a in actions
                ]
            ),
            recommendations=[
                r.to_dict() for r in self.scrubber.get_recommendations(result)
            ],
            previous_report_id=claim.latest_report_id,
        )
        self.db.add(report)

        claim.last_scrub_date = now
        claim.scrub_error_count = result.summary.error_count
        claim.scrub_warning_count = result.summary.warning_count
        claim.scrub_auto_fixed_count = result.summary.fixed_count
        claim.latest_report_id = report.id
        claim.updated_by = identity.user_id
        lifecycle.apply_scrub_outcome(claim, result.status)

        self._flush()

        audit_log.log_claim_scrubbed(
            self.audit, claim, identity, report, from_status, event_type=event_type
        )
        return report

    def scrub_claim(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        auto_fix: bool = False,
        categories: Optional[Sequence[str]] = None,
        expected_version: Optional[int] = None,
    ) -> ScrubReport:
        claim = self._load(claim_id, identity)
        lifecycle.ensure_scrubbable(claim)
        self._check_version(claim, expected_version)
        cats = self._validate_categories(categories)

        snapshot = claim_to_snapshot(claim)
        result = self.scrubber.scrub(
            snapshot,
            auto_fix=auto_fix,
            categories=cats,
            context=self.rule_context_factory(),
        )
        report = self._persist_scrub(
            claim,
            result,
            identity,
            snapshot=snapshot,
            auto_fix=auto_fix,
            categories=cats,
            actions=[ReportAction.SCRUBBED],
        )
        self._commit()
        logger.info(
            "Scrubbed claim %s: %s (%d errors, %d warnings, %d fixed)",
            claim.claim_number,
            report.status,
            result.summary.error_count,
            result.summary.warning_count,
            result.summary.fixed_count,
        )
        return report

    def auto_fix_claim(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        expected_version: Optional[int] = None,
    ) -> AutoFixOutcome:
        """
        Apply every available fix, write the corrected data back and record
        the run as a full scrub of the fixed claim. The resulting report lists
        the fixes alongside whatever is left.
        """
        claim = self._load(claim_id, identity)
        lifecycle.ensure_scrubbable(claim)
        self._check_version(claim, expected_version)

        ctx = self.rule_context_factory()
        snapshot = claim_to_snapshot(claim)
        fix = self.scrubber.auto_fix_all(snapshot, context=ctx)
        diff = self.scrubber.compare_claims(snapshot, fix.claim)
        result = self.scrubber.merge_fixes(
            self.scrubber.scrub(fix.claim, context=ctx), fix.fixes
        )
        report = self._persist_scrub(
            claim,
            result,
            identity,
            snapshot=snapshot,
            auto_fix=True,
            categories=None,
            actions=[ReportAction.AUTO_FIXED, ReportAction.SCRUBBED],
            event_type="claim.auto_fixed",
        )
        self._commit()
        logger.info(
            "Auto-fixed claim %s: %d fix(es), %d field(s) changed",
            claim.claim_number,
            fix.fixed_count,
            diff["change_count"],
        )

        return AutoFixOutcome(
            fixed=fix.fixed,
            fixed_count=fix.fixed_count,
            message=fix.message,
            report=report,
            claim=claim,
            fixes=report.fixed_issues,
            changes=json_safe(diff["changes"]),
        )

    def batch_scrub(
        self,
        claim_ids: Sequence[Any],
        identity: Identity,
        *,
        auto_fix: bool = False,
        categories: Optional[Sequence[str]] = None,
        cancel_event: Optional[Event] = None,
    ) -> BatchScrubOutcome:
        """
        Scrub many claims. A claim that cannot be loaded, is not scrubbable or
        fails to persist becomes an error entry; the others still complete.
        """
        if not claim_ids:
            raise BadRequestError("At least one claim id is required")
        if len(claim_ids) > settings.scrub_batch_max_claims:
            raise BadRequestError(
                f"A batch may contain at most {settings.scrub_batch_max_claims} claims",
                details={"received": len(claim_ids)},
            )
        cats = self._validate_categories(categories)

        results = [BatchClaimResult(claim_id=str(cid)) for cid in claim_ids]
        eligible: list[tuple[int, Claim]] = []
        for index, cid in enumerate(claim_ids):
            try:
                claim = self._load(cid, identity)
                lifecycle.ensure_scrubbable(claim)
            except (NotFoundError, ForbiddenError, BadRequestError) as exc:
                results[index].error = exc.message
                continue
            results[index].claim_number = claim.claim_number
            eligible.append((index, claim))

        snapshots = [claim_to_snapshot(c) for _, c in eligible]
        batch = self.scrubber.scrub_batch(
            snapshots,
            auto_fix=auto_fix,
            categories=cats,
            context=self.rule_context_factory(),
            cancel_event=cancel_event,
        )

        for (index, claim), snapshot, item in zip(eligible, snapshots, batch.results):
            entry = results[index]
            if item.cancelled:
                entry.cancelled = True
                continue
            if item.result is None:
                entry.error = item.error
                continue
            try:
                with self.db.begin_nested():
                    report = self._persist_scrub(
                        claim,
                        item.result,
                        identity,
                        snapshot=snapshot,
                        auto_fix=auto_fix,
                        categories=cats,
                        actions=[ReportAction.BATCH_SCRUBBED],
                    )
            except Exception as exc:
                logger.warning(
                    "Batch scrub could not persist claim %s: %s", claim.claim_number, exc
                )
                entry.error = str(exc)
                continue
            entry.status = report.status
            entry.report_id = report.id

        self._commit()

        summary = batch.summary.to_dict()
        skipped = len(claim_ids) - len(eligible)
        summary["total_claims"] = len(claim_ids)
        summary["errored"] = sum(1 for r in results if r.error)
        summary["skipped"] = skipped
        logger.info(
            "Batch scrub of %d claims: %d passed, %d with warnings, %d fixed, "
            "%d failed, %d errored, %d cancelled",
            len(claim_ids),
            summary["passed"],
            summary["passed_with_warnings"],
            summary["fixed"],
            summary["failed"],
            summary["errored"],
            summary["cancelled"],
        )
        return BatchScrubOutcome(results=results, summary=summary)

    # ── Reports ───────────────────────────────────────────────────────────────

    def list_reports(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> tuple[list[ScrubReport], int]:
        claim = self._load(claim_id, identity)
        if page < 1:
            raise BadRequestError("page must be >= 1")
        limit = min(limit or settings.default_page_limit, settings.max_page_limit)

        total = (
            self.db.scalar(
                select(func.count(ScrubReport.id)).where(ScrubReport.claim_id == claim.id)
            )
            or 0
        )
        reports = self.db.scalars(
            select(ScrubReport)
            .where(ScrubReport.claim_id == claim.id)
            .order_by(ScrubReport.scrubbed_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return list(reports), total

    def get_latest_report(self, claim_id: Any, identity: Identity) -> ScrubReport:
        claim = self._load(claim_id, identity)
        if claim.latest_report_id is None:
            raise NotFoundError(f"No scrub reports found for claim {claim.claim_number}")
        report = self.db.get(ScrubReport, claim.latest_report_id)
        if report is None:
            raise NotFoundError(f"No scrub reports found for claim {claim.claim_number}")
        return report

    def get_report(self, report_id: Any, identity: Identity) -> ScrubReport:
        return self._load_report(report_id, identity)

    def compare_report_with_previous(
        self, report_id: Any, identity: Identity
    ) -> dict[str, Any]:
        report = self._load_report(report_id, identity)
        previous = (
            self.db.get(ScrubReport, report.previous_report_id)
            if report.previous_report_id
            else None
        )
        return compare_reports(report, previous)

    def get_report_statistics(
        self,
        identity: Identity,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        conditions = self._scope(identity)
        if start:
            conditions.append(ScrubReport.scrubbed_at >= start)
        if end:
            conditions.append(ScrubReport.scrubbed_at <= end)
        reports = self.db.scalars(
            select(ScrubReport)
            .join(Claim, Claim.id == ScrubReport.claim_id)
            .where(*conditions)
        ).all()
        return report_statistics(reports)

    def get_reports_needing_attention(
        self, identity: Identity, *, limit: int = 50
    ) -> list[ScrubReport]:
        """Latest failing or warning report of every claim still awaiting submission."""
        conditions = self._scope(identity) + [
            ScrubReport.status.in_([ScrubStatus.FAIL, ScrubStatus.PASS_WITH_WARNINGS]),
            Claim.status.in_(ClaimStatus.PRE_SUBMISSION),
        ]
        reports = self.db.scalars(
            select(ScrubReport)
            .join(Claim, Claim.latest_report_id == ScrubReport.id)
            .where(*conditions)
        ).all()
        return sorted(reports, key=attention_sort_key)[:limit]

    # ── Submission ────────────────────────────────────────────────────────────

    def pre_submit_validation(self, claim_id: Any, identity: Identity) -> PreSubmitCheck:
        """Dry run of the scrub gate: no report is stored and the claim is untouched."""
        claim = self._load(claim_id, identity)
        return self.scrubber.pre_submit_validation(
            claim_to_snapshot(claim), context=self.rule_context_factory()
        )

    def submit_claim(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        expected_version: Optional[int] = None,
    ) -> SubmissionResult:
        claim = self._load(claim_id, identity)
        self._check_version(claim, expected_version)
        lifecycle.ensure_ready_for_submission(claim)

        ctx = self.rule_context_factory()
        days_left = lifecycle.days_until_timely_filing(
            claim, ctx.today, ctx.timely_filing_limit_days
        )
        within = lifecycle.is_within_timely_filing(
            claim, ctx.today, ctx.timely_filing_limit_days
        )
        if not within:
            # Submission still goes ahead; the payer decides
            logger.warning(
                "Claim %s submitted outside the timely filing window (%s days remaining)",
                claim.claim_number,
                days_left,
            )
            audit_log.log_timely_filing_risk(self.audit, claim, identity, days_left)

        now = self._now()
        from_status = claim.status
        lifecycle.mark_submitted(
            claim,
            tracking_number=generate_tracking_number(now, new_tracking_token()),
            submitted_by=identity.user_id,
            now=now,
        )
        self._flush()
        audit_log.log_claim_submitted(self.audit, claim, identity, from_status, within)
        self._commit()
        logger.info("Submitted claim %s as %s", claim.claim_number, claim.tracking_number)
        return SubmissionResult(
            claim=claim, within_timely_filing=within, days_until_deadline=days_left
        )

    def resubmit_claim(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        reason: str,
        changes: Optional[dict[str, Any]] = None,
    ) -> Claim:
        original = self._load(claim_id, identity)
        normalised = {
            name: _normalise(name, value) for name, value in (changes or {}).items()
        }
        new_claim = lifecycle.build_resubmission(
            original,
            claim_number=allocate_claim_number(self.db, self._now()),
            reason=reason,
            changes=normalised,
            actor_id=identity.user_id,
        )
        self._ensure_access(new_claim, identity)
        self.db.add(new_claim)
        self._flush()
        audit_log.log_claim_resubmitted(self.audit, new_claim, original, identity)
        self._commit()
        logger.info(
            "Resubmitted claim %s as %s", original.claim_number, new_claim.claim_number
        )
        return new_claim

    # ── Coordination of benefits ──────────────────────────────────────────────

    def _secondary_of(self, primary: Claim) -> Optional[Claim]:
        return self.db.scalars(
            select(Claim)
            .where(Claim.primary_claim_id == primary.id)
            .order_by(Claim.created_at)
        ).first()

    def get_secondary_readiness(self, claim_id: Any, identity: Identity) -> dict[str, Any]:
        primary = self._load(claim_id, identity)
        ctx = self.rule_context_factory()
        readiness = lifecycle.secondary_readiness(
            primary,
            secondary_filed=self._secondary_of(primary) is not None,
            today=ctx.today,
            default_limit=ctx.timely_filing_limit_days,
        )
        return {
            **readiness,
            "claim_id": primary.id,
            "claim_number": primary.claim_number,
            "status": primary.status,
            "amount_paid": primary.amount_paid,
        }

    def create_secondary_claim(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        adjustments: Decimal = Decimal("0.00"),
        patient_responsibility: Optional[Decimal] = None,
    ) -> SecondaryClaimResult:
        """
        Spawn a draft claim for the secondary payer from a paid primary.
        At most one secondary exists per primary.
        """
        if identity.is_patient:
            raise ForbiddenError("Patients may not file secondary claims")
        primary = self._load(claim_id, identity)
        if self._secondary_of(primary) is not None:
            raise BadRequestError(
                f"A secondary claim already exists for {primary.claim_number}"
            )

        amounts = lifecycle.secondary_amounts(
            primary,
            adjustments=Decimal(str(adjustments)).quantize(Decimal("0.01")),
            patient_responsibility=(
                None
                if patient_responsibility is None
                else Decimal(str(patient_responsibility)).quantize(Decimal("0.01"))
            ),
        )
        secondary = lifecycle.build_secondary(
            primary,
            claim_number=allocate_claim_number(self.db, self._now()),
            amounts=amounts,
            actor_id=identity.user_id,
        )
        self.db.add(secondary)
        self._flush()
        audit_log.log_secondary_claim_created(self.audit, secondary, primary, identity)
        self._commit()
        logger.info(
            "Filed secondary claim %s for %s (remaining balance %s)",
            secondary.claim_number,
            primary.claim_number,
            amounts["remaining_balance"],
        )
        return SecondaryClaimResult(primary=primary, secondary=secondary, amounts=amounts)

    def get_secondary_claim(self, claim_id: Any, identity: Identity) -> Optional[Claim]:
        return self._secondary_of(self._load(claim_id, identity))

    def list_ready_for_secondary(self, identity: Identity) -> list[Claim]:
        """
        Paid claims with secondary coverage and no secondary filed yet.
        Coverage is a JSON block, so that part is checked in Python.
        """
        filed = select(Claim.primary_claim_id).where(Claim.primary_claim_id.is_not(None))
        paid = self.db.scalars(
            select(Claim)
            .where(
                *self._scope(identity),
                Claim.status == ClaimStatus.PAID,
                Claim.id.not_in(filed),
            )
            .order_by(Claim.payment_received_at, Claim.claim_number)
        ).all()
        return [c for c in paid if lifecycle.has_secondary_insurance(c)]

    # ── Adjudication ──────────────────────────────────────────────────────────

    def record_status(
        self,
        claim_id: Any,
        identity: Identity,
        to_status: str,
        *,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Claim:
        self._ensure_staff(identity)
        claim = self._load(claim_id, identity)
        self._check_version(claim, expected_version)
        from_status = lifecycle.record_outcome(claim, to_status, identity.user_id)
        self._flush()
        audit_log.log_claim_status_changed(
            self.audit, claim, identity, from_status, note=note
        )
        self._commit()
        return claim

    def mark_paid(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        amount_paid: Decimal,
        check_number: Optional[str] = None,
        era_number: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Claim:
        self._ensure_staff(identity)
        claim = self._load(claim_id, identity)
        self._check_version(claim, expected_version)
        from_status = lifecycle.mark_paid(
            claim,
            amount_paid=Decimal(str(amount_paid)).quantize(Decimal("0.01")),
            actor_id=identity.user_id,
            paid_at=paid_at or self._now(),
            check_number=check_number,
            era_number=era_number,
        )
        self._flush()
        audit_log.log_claim_status_changed(
            self.audit,
            claim,
            identity,
            from_status,
            amount_paid=claim.amount_paid,
            check_number=check_number,
            era_number=era_number,
        )
        self._commit()
        return claim

    def mark_denied(
        self,
        claim_id: Any,
        identity: Identity,
        *,
        reason: str,
        code: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Claim:
        self._ensure_staff(identity)
        claim = self._load(claim_id, identity)
        self._check_version(claim, expected_version)
        from_status = lifecycle.mark_denied(
            claim, reason=reason, code=code, actor_id=identity.user_id
        )
        self._flush()
        audit_log.log_claim_status_changed(
            self.audit, claim, identity, from_status, denial_reason=reason, denial_code=code
        )
        self._commit()
        return claim

    # ── Statistics ────────────────────────────────────────────────────────────

    def get_stats_overview(
        self,
        identity: Identity,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        conditions = self._scope(identity)
        if start:
            conditions.append(Claim.created_at >= start)
        if end:
            conditions.append(Claim.created_at <= end)

        def count(*extra) -> int:
            return self.db.scalar(select(func.count(Claim.id)).where(*conditions, *extra)) or 0

        by_status = dict(
            self.db.execute(
                select(Claim.status, func.count(Claim.id))
                .where(*conditions)
                .group_by(Claim.status)
            ).all()
        )
        by_scrub_status = dict(
            self.db.execute(
                select(Claim.scrub_status, func.count(Claim.id))
                .where(*conditions)
                .group_by(Claim.scrub_status)
            ).all()
        )
        average = self.db.scalar(select(func.avg(Claim.total_charges)).where(*conditions))
        total_charges = self.db.scalar(
            select(func.sum(Claim.total_charges)).where(*conditions)
        )

        return {
            "total": count(),
            "by_status": by_status,
            "by_scrub_status": by_scrub_status,
            "average_charges": round(float(average or 0), 2),
            "total_charges": round(float(total_charges or 0), 2),
            "ready_to_submit": count(
                Claim.status.in_(ClaimStatus.PRE_SUBMISSION),
                Claim.scrub_status.in_(ScrubStatus.SUBMITTABLE),
            ),
            "needing_scrubbing": count(
                Claim.status == ClaimStatus.DRAFT,
                Claim.scrub_status.in_(ScrubStatus.NEEDS_SCRUBBING),
            ),
        }

    def get_claims_approaching_deadline(
        self, identity: Identity, *, days: int = 10
    ) -> list[tuple[Claim, int]]:
        """
        Unsubmitted claims whose filing deadline falls within `days`, soonest first.
        Evaluated in Python because the limit can differ per payer.
        """
        ctx = self.rule_context_factory()
        candidates = self.db.scalars(
            select(Claim).where(
                *self._scope(identity),
                Claim.status.in_(ClaimStatus.PRE_SUBMISSION),
                Claim.service_date.is_not(None),
            )
        ).all()

        approaching: list[tuple[Claim, int]] = []
        for claim in candidates:
            remaining = lifecycle.days_until_timely_filing(
                claim, ctx.today, ctx.timely_filing_limit_days
            )
            if remaining is not None and 0 < remaining <= days:
                approaching.append((claim, remaining))
        return sorted(approaching, key=lambda pair: (pair[1], pair[0].claim_number))
