"""
Audit Logger: the only way to write AuditEvent rows.

Design rules enforced here:
  - created_at is always server-set (DB default); never passed by application
  - Payload is always serialized to a plain dict (no ORM objects)
  - All writes go through log_event(); no direct AuditEvent instantiation elsewhere
  - This module never raises; audit failures are logged but do not block the main flow

The claims service talks to an AuditSink rather than to log_event directly so
it can run without a database audit trail (NullAuditSink) in scripts and tests.
"""

import logging
import uuid
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session

from app.models.audit import ActorRole, AuditEvent
from app.services.serialization import json_safe

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    event_type: str,
    payload: dict[str, Any],
    actor_role: str = ActorRole.SYSTEM,
    actor_id: Optional[str] = None,
) -> None:
    """
    Write an immutable audit event to the database.

    Args:
        db:          SQLAlchemy session (caller manages transaction)
        entity_type: The type of entity that changed (e.g. "claim", "scrub_report")
        entity_id:   UUID of the entity
        event_type:  Past-tense event name (e.g. "claim.submitted", "claim.scrubbed")
        payload:     Dict snapshot of relevant state: JSON-serializable
        actor_role:  SYSTEM | PATIENT | PRACTITIONER | BILLING | ADMIN
        actor_id:    Identity user id if human-triggered; None for system events

    The insert runs inside a SAVEPOINT so a failed write cannot poison the
    caller's transaction. Does not raise; exceptions are logged as warnings.
    """
    try:
        with db.begin_nested():
            db.add(
                AuditEvent(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    event_type=event_type,
                    actor_role=actor_role,
                    actor_id=actor_id,
                    payload=json_safe(payload),
                    # created_at is intentionally NOT set here; let DB set it via server_default
                )
            )
    except Exception as exc:
        logger.warning(
            "Failed to write audit event %r for %s:%s: %s",
            event_type,
            entity_type,
            entity_id,
            exc,
        )


# ── Sinks ─────────────────────────────────────────────────────────────────────


class AuditSink(Protocol):
    def record(
        self,
        event_type: str,
        *,
        entity_type: str,
        entity_id: uuid.UUID,
        payload: dict[str, Any],
        actor_role: str = ActorRole.SYSTEM,
        actor_id: Optional[str] = None,
    ) -> None: ...


class DatabaseAuditSink:
    """Writes AuditEvent rows through log_event plus one log line per event."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        event_type: str,
        *,
        entity_type: str,
        entity_id: uuid.UUID,
        payload: dict[str, Any],
        actor_role: str = ActorRole.SYSTEM,
        actor_id: Optional[str] = None,
    ) -> None:
        logger.info(
            "audit %s %s:%s actor=%s/%s",
            event_type,
            entity_type,
            entity_id,
            actor_role,
            actor_id,
        )
        log_event(
            self.db,
            entity_type,
            entity_id,
            event_type,
            payload,
            actor_role=actor_role,
            actor_id=actor_id,
        )


class NullAuditSink:
    def record(self, event_type: str, **kwargs: Any) -> None:
        return None


# ── Convenience wrappers for claim events ─────────────────────────────────────


def _claim_payload(claim, identity, transition: str, **extra: Any) -> dict[str, Any]:
    return {
        "claim_id": claim.id,
        "claim_number": claim.claim_number,
        "user_id": identity.user_id if identity else None,
        "transition": transition,
        **extra,
    }


def _record(audit: AuditSink, event_type: str, claim, identity, payload) -> None:
    try:
        audit.record(
            event_type,
            entity_type="claim",
            entity_id=claim.id,
            payload=payload,
            actor_role=identity.role if identity else ActorRole.SYSTEM,
            actor_id=identity.user_id if identity else None,
        )
    except Exception as exc:
        # A failing sink never blocks the transition
        logger.warning(
            "Audit sink failed for %s on %s: %s", event_type, claim.claim_number, exc
        )


def log_claim_created(audit: AuditSink, claim, identity) -> None:
    _record(
        audit,
        "claim.created",
        claim,
        identity,
        _claim_payload(claim, identity, "created", status=claim.status),
    )


def log_claim_updated(audit: AuditSink, claim, identity, fields: list[str]) -> None:
    _record(
        audit,
        "claim.updated",
        claim,
        identity,
        _claim_payload(
            claim,
            identity,
            "updated",
            fields=fields,
            scrub_status=claim.scrub_status,
        ),
    )


def log_claim_deleted(audit: AuditSink, claim, identity) -> None:
    _record(
        audit,
        "claim.deleted",
        claim,
        identity,
        _claim_payload(claim, identity, "deleted"),
    )


def log_claim_scrubbed(
    audit: AuditSink,
    claim,
    identity,
    report,
    from_status: str,
    event_type: str = "claim.scrubbed",
) -> None:
    _record(
        audit,
        event_type,
        claim,
        identity,
        _claim_payload(
            claim,
            identity,
            f"{from_status}->{claim.status}",
            report_id=report.id,
            scrub_status=report.status,
            error_count=(report.summary or {}).get("error_count", 0),
            warning_count=(report.summary or {}).get("warning_count", 0),
            fixed_count=(report.summary or {}).get("fixed_count", 0),
        ),
    )


def log_claim_submitted(
    audit: AuditSink, claim, identity, from_status: str, within_timely_filing: bool
) -> None:
    _record(
        audit,
        "claim.submitted",
        claim,
        identity,
        _claim_payload(
            claim,
            identity,
            f"{from_status}->{claim.status}",
            tracking_number=claim.tracking_number,
            within_timely_filing=within_timely_filing,
        ),
    )


def log_timely_filing_risk(audit: AuditSink, claim, identity, days_remaining) -> None:
    _record(
        audit,
        "claim.timely_filing_risk",
        claim,
        identity,
        _claim_payload(
            claim,
            identity,
            "submit",
            service_date=claim.service_date,
            days_remaining=days_remaining,
        ),
    )


def log_claim_resubmitted(audit: AuditSink, new_claim, original, identity) -> None:
    _record(
        audit,
        "claim.resubmitted",
        new_claim,
        identity,
        _claim_payload(
            new_claim,
            identity,
            "resubmitted",
            original_claim_id=original.id,
            original_claim_number=original.claim_number,
            reason=new_claim.resubmission_reason,
            resubmission_count=new_claim.resubmission_count,
        ),
    )


def log_secondary_claim_created(audit: AuditSink, secondary, primary, identity) -> None:
    _record(
        audit,
        "claim.secondary_created",
        secondary,
        identity,
        _claim_payload(
            secondary,
            identity,
            "secondary_created",
            primary_claim_id=primary.id,
            primary_claim_number=primary.claim_number,
            primary_paid_amount=secondary.primary_paid_amount,
            patient_responsibility=secondary.patient_responsibility,
        ),
    )


def log_claim_status_changed(
    audit: AuditSink, claim, identity, from_status: str, **extra: Any
) -> None:
    _record(
        audit,
        "claim.status_changed",
        claim,
        identity,
        _claim_payload(claim, identity, f"{from_status}->{claim.status}", **extra),
    )
