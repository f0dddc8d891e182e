"""
Integration tests for the background batch scrub job and the audit trail it
leaves behind.

The job opens its own session through SessionLocal; tests point that at the
per-test connection so everything is still rolled back afterwards.
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit import AuditEvent
from app.models.claim import ClaimStatus, ScrubStatus
from app.services.audit.logger import log_event
from app.workers import scrub_jobs


pytestmark = pytest.mark.usefixtures("db")


@pytest.fixture
def job_session(connection, monkeypatch):
    monkeypatch.setattr(
        scrub_jobs,
        "SessionLocal",
        lambda: Session(bind=connection, join_transaction_mode="create_savepoint"),
    )


# ── Batch job ─────────────────────────────────────────────────────────────────


class TestRunBatchScrub:
    def test_job_scrubs_and_reports(self, job_session, make_claim, billing, db):
        # the job scrubs against the real date
        recent = date.today() - timedelta(days=10)
        good = make_claim(service_date=recent)
        bad = make_claim(service_date=recent, place_of_service=None)
        missing = str(uuid.uuid4())

        result = scrub_jobs.run_batch_scrub(
            [str(good.id), str(bad.id), missing], billing.user_id, billing.role
        )
        db.expire_all()

        statuses = {r["claim_id"]: r["status"] for r in result["results"]}
        assert statuses == {
            str(good.id): ScrubStatus.PASS,
            str(bad.id): ScrubStatus.FAIL,
            missing: None,
        }
        assert result["summary"]["errored"] == 1
        assert result["results"][0]["report_id"] == str(good.latest_report_id)
        assert good.status == ClaimStatus.READY

    def test_job_auto_fix(self, job_session, make_claim, billing, db):
        claim = make_claim(service_date=date.today() - timedelta(days=5), total_charges="300.00")

        result = scrub_jobs.run_batch_scrub(
            [str(claim.id)], billing.user_id, billing.role, auto_fix=True
        )
        db.expire_all()

        assert result["results"][0]["status"] == ScrubStatus.FIXED
        assert claim.total_charges == Decimal("250.00")

    def test_job_propagates_bad_input(self, job_session, billing):
        with pytest.raises(ValueError):
            scrub_jobs.run_batch_scrub(["not-a-uuid"], billing.user_id, billing.role)


# ── Audit log ─────────────────────────────────────────────────────────────────


class TestAuditLog:
    def test_event_written(self, db):
        entity_id = uuid.uuid4()
        log_event(db, "claim", entity_id, "claim.created", {"claim_id": entity_id})
        db.flush()

        event = db.scalars(select(AuditEvent).where(AuditEvent.entity_id == entity_id)).one()
        assert event.actor_role == "system"
        assert event.payload == {"claim_id": str(entity_id)}

    def test_unserializable_payload_is_swallowed(self, db, caplog):
        entity_id = uuid.uuid4()

        log_event(db, "claim", entity_id, "claim.created", {"bad": object()})

        assert db.scalars(select(AuditEvent).where(AuditEvent.entity_id == entity_id)).all() == []
        assert "Failed to write audit event" in caplog.text

    def test_claim_events_carry_transition(self, service, make_claim, billing, db):
        claim = make_claim()
        service.scrub_claim(claim.id, billing)

        event = db.scalars(
            select(AuditEvent).where(
                AuditEvent.entity_id == claim.id, AuditEvent.event_type == "claim.scrubbed"
            )
        ).one()
        assert event.actor_role == billing.role
        assert event.actor_id == billing.user_id
        assert event.payload["transition"] == "draft->ready"
        assert event.payload["claim_number"] == claim.claim_number
