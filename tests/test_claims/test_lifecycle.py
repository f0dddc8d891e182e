"""
Claim lifecycle guards and transitions: operate on transient Claim objects.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from app.models.claim import Claim, ClaimStatus, ScrubStatus
from app.services.claims import lifecycle
from app.services.claims.errors import BadRequestError

TODAY = date(2025, 3, 15)
NOW = datetime(2025, 3, 15, 9, 30, tzinfo=timezone.utc)


def _claim(**overrides) -> Claim:
    values = dict(
        claim_number="CLM-20250301-000001",
        status=ClaimStatus.DRAFT,
        scrub_status=ScrubStatus.NOT_SCRUBBED,
        scrub_error_count=0,
        patient_id="pat-1",
        provider_id="prov-1",
        insurance={"payer_id": "AETNA", "policy_number": "P1"},
        service_date=date(2025, 3, 1),
        diagnosis_codes=["J06.9"],
        procedures=[{"code": "99213", "charge": "150.00", "units": 1}],
        total_charges=Decimal("150.00"),
        resubmission_count=0,
    )
    values.update(overrides)
    return Claim(**values)


class TestTransitions:
    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            ("draft", "ready"),
            ("submitted", "denied"),
            ("denied", "appealed"),
            ("appealed", "partially_approved"),
            ("accepted", "paid"),
            ("paid", "closed"),
        ],
    )
    def test_allowed(self, from_status, to_status):
        assert lifecycle.can_transition(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [("ready", "draft"), ("submitted", "paid"), ("closed", "appealed"), ("paid", "denied")],
    )
    def test_rejected(self, from_status, to_status):
        assert not lifecycle.can_transition(from_status, to_status)

    def test_closed_is_terminal(self):
        assert lifecycle.TRANSITIONS[ClaimStatus.CLOSED] == set()

    def test_ensure_transition_lists_allowed(self):
        claim = _claim(status=ClaimStatus.PAID)
        with pytest.raises(BadRequestError) as exc_info:
            lifecycle.ensure_transition(claim, ClaimStatus.DENIED)
        assert exc_info.value.details["allowed"] == ["closed"]


class TestGuards:
    def test_only_drafts_are_editable(self):
        lifecycle.ensure_editable(_claim())
        with pytest.raises(BadRequestError):
            lifecycle.ensure_editable(_claim(status=ClaimStatus.READY))

    def test_only_drafts_are_deletable(self):
        with pytest.raises(BadRequestError):
            lifecycle.ensure_deletable(_claim(status=ClaimStatus.SUBMITTED))

    def test_scrubbable_before_submission_only(self):
        lifecycle.ensure_scrubbable(_claim(status=ClaimStatus.READY))
        with pytest.raises(BadRequestError):
            lifecycle.ensure_scrubbable(_claim(status=ClaimStatus.SUBMITTED))

    @pytest.mark.parametrize("scrub_status", ["pass", "pass_with_warnings", "fixed"])
    def test_ready_for_submission(self, scrub_status):
        assert lifecycle.is_ready_for_submission(_claim(scrub_status=scrub_status))

    @pytest.mark.parametrize("scrub_status", ["not_scrubbed", "fail"])
    def test_not_ready_for_submission(self, scrub_status):
        claim = _claim(scrub_status=scrub_status)
        assert not lifecycle.is_ready_for_submission(claim)
        with pytest.raises(BadRequestError, match="must pass scrubbing"):
            lifecycle.ensure_ready_for_submission(claim)


class TestTimelyFiling:
    def test_days_until_deadline(self):
        # 2025-03-01 + 90 days = 2025-05-30
        assert lifecycle.days_until_timely_filing(_claim(), TODAY, 90) == 76

    def test_payer_override(self):
        claim = _claim(insurance={"payer_id": "X", "timely_filing_limit": 30})
        assert lifecycle.filing_limit_days(claim, 90) == 30
        assert lifecycle.timely_filing_deadline(claim, 90) == date(2025, 3, 31)

    def test_deadline_day_is_still_within(self):
        claim = _claim(service_date=date(2024, 12, 15))
        assert lifecycle.days_until_timely_filing(claim, TODAY, 90) == 0
        assert lifecycle.is_within_timely_filing(claim, TODAY, 90)

    def test_past_deadline(self):
        claim = _claim(service_date=date(2024, 1, 1))
        assert not lifecycle.is_within_timely_filing(claim, TODAY, 90)

    def test_no_service_date(self):
        claim = _claim(service_date=None)
        assert lifecycle.days_until_timely_filing(claim, TODAY, 90) is None
        assert not lifecycle.is_within_timely_filing(claim, TODAY, 90)


class TestScrubOutcome:
    def test_passing_scrub_promotes_draft(self):
        claim = _claim()
        assert lifecycle.apply_scrub_outcome(claim, ScrubStatus.FIXED) == ClaimStatus.READY
        assert claim.scrub_status == ScrubStatus.FIXED

    def test_failing_scrub_leaves_status(self):
        claim = _claim(status=ClaimStatus.READY, scrub_status=ScrubStatus.PASS)
        lifecycle.apply_scrub_outcome(claim, ScrubStatus.FAIL)
        assert claim.status == ClaimStatus.READY
        assert claim.scrub_status == ScrubStatus.FAIL


class TestPayerOutcomes:
    def test_submit_sets_tracking(self):
        claim = _claim(status=ClaimStatus.READY, scrub_status=ScrubStatus.PASS)
        lifecycle.mark_submitted(claim, tracking_number="TRK-1", submitted_by="u1", now=NOW)
        assert claim.status == ClaimStatus.SUBMITTED
        assert (claim.tracking_number, claim.submitted_at) == ("TRK-1", NOW)

    def test_submit_twice_rejected(self):
        claim = _claim(status=ClaimStatus.SUBMITTED, scrub_status=ScrubStatus.PASS)
        with pytest.raises(BadRequestError, match="already been submitted"):
            lifecycle.mark_submitted(claim, tracking_number="T", submitted_by="u", now=NOW)

    def test_paid_is_not_a_plain_status_update(self):
        with pytest.raises(BadRequestError):
            lifecycle.record_outcome(_claim(status=ClaimStatus.ACCEPTED), "paid", "u1")

    def test_record_outcome_returns_previous_status(self):
        claim = _claim(status=ClaimStatus.SUBMITTED)
        assert lifecycle.record_outcome(claim, ClaimStatus.PENDING, "u1") == "submitted"
        assert claim.status == ClaimStatus.PENDING

    def test_mark_paid(self):
        claim = _claim(status=ClaimStatus.APPROVED)
        lifecycle.mark_paid(
            claim, amount_paid=Decimal("120.00"), actor_id="u1", paid_at=NOW, check_number="CHK9"
        )
        assert claim.status == ClaimStatus.PAID
        assert claim.amount_paid == Decimal("120.00")

    def test_mark_paid_negative_amount(self):
        with pytest.raises(BadRequestError):
            lifecycle.mark_paid(
                _claim(status=ClaimStatus.APPROVED),
                amount_paid=Decimal("-1"),
                actor_id="u1",
                paid_at=NOW,
            )

    def test_denial_needs_reason(self):
        with pytest.raises(BadRequestError):
            lifecycle.mark_denied(_claim(status=ClaimStatus.SUBMITTED), reason=" ", actor_id="u1")


class TestResubmission:
    def test_builds_new_draft_from_original(self):
        original = _claim(status=ClaimStatus.DENIED, scrub_status=ScrubStatus.PASS)
        new = lifecycle.build_resubmission(
            original,
            claim_number="CLM-20250315-000009",
            reason="Corrected diagnosis",
            changes={"diagnosis_codes": ["J02.9"]},
            actor_id="billing-1",
        )

        assert new.status == ClaimStatus.DRAFT
        assert new.scrub_status == ScrubStatus.NOT_SCRUBBED
        assert new.diagnosis_codes == ["J02.9"]
        assert new.procedures == original.procedures
        assert new.procedures is not original.procedures
        assert new.resubmission_count == 1
        assert original.diagnosis_codes == ["J06.9"]
        assert original.status == ClaimStatus.DENIED

    def test_insurance_change_updates_payer(self):
        original = _claim(status=ClaimStatus.SUBMITTED)
        new = lifecycle.build_resubmission(
            original,
            claim_number="CLM-2",
            reason="New payer",
            changes={"insurance": {"payer_id": "CIGNA"}},
            actor_id="u1",
        )
        assert new.payer_id == "CIGNA"

    def test_draft_cannot_be_resubmitted(self):
        with pytest.raises(BadRequestError):
            lifecycle.build_resubmission(
                _claim(), claim_number="C", reason="r", changes={}, actor_id="u"
            )

    def test_unknown_change_fields_rejected(self):
        with pytest.raises(BadRequestError) as exc_info:
            lifecycle.build_resubmission(
                _claim(status=ClaimStatus.DENIED),
                claim_number="C",
                reason="r",
                changes={"status": "paid"},
                actor_id="u",
            )
        assert exc_info.value.details == {"fields": ["status"]}

    def test_patient_reference_cannot_be_blanked(self):
        with pytest.raises(BadRequestError) as exc_info:
            lifecycle.build_resubmission(
                _claim(status=ClaimStatus.DENIED),
                claim_number="C",
                reason="r",
                changes={"patient_id": ""},
                actor_id="u",
            )
        assert exc_info.value.details[0]["field"] == "patient_id"


SECONDARY = {"payer_id": "MEDICARE", "policy_number": "1EG4TE5MK73", "timely_filing_limit": 30}


def _paid(**overrides) -> Claim:
    values = dict(
        status=ClaimStatus.PAID,
        amount_paid=Decimal("120.00"),
        payment_received_at=datetime(2025, 3, 5, tzinfo=timezone.utc),
        secondary_insurance=dict(SECONDARY),
    )
    values.update(overrides)
    return _claim(**values)


class TestSecondaryClaims:
    def test_amounts(self):
        amounts = lifecycle.secondary_amounts(_paid(), adjustments=Decimal("-10.00"))
        assert amounts["allowed_amount"] == Decimal("140.00")
        assert amounts["remaining_balance"] == Decimal("20.00")
        assert amounts["patient_responsibility"] == Decimal("20.00")

    def test_overpaid_primary_leaves_zero_balance(self):
        amounts = lifecycle.secondary_amounts(
            _paid(amount_paid=Decimal("150.00")), adjustments=Decimal("25.00")
        )
        assert amounts["remaining_balance"] == Decimal("0.00")

    def test_readiness_all_checks_pass(self):
        readiness = lifecycle.secondary_readiness(
            _paid(), secondary_filed=False, today=TODAY, default_limit=90
        )
        assert readiness["ready"] is True
        assert [c["check"] for c in readiness["checks"]] == [
            "has_secondary_insurance",
            "primary_paid",
            "secondary_not_filed",
            "timely_filing",
        ]
        # Payer limit of 30 days, clock started on 2025-03-05
        assert readiness["days_remaining"] == 20

    def test_readiness_reports_every_failure(self):
        readiness = lifecycle.secondary_readiness(
            _claim(status=ClaimStatus.SUBMITTED, secondary_insurance={}),
            secondary_filed=True,
            today=TODAY,
            default_limit=90,
        )
        assert readiness["ready"] is False
        failed = [c["check"] for c in readiness["checks"] if not c["passed"]]
        assert failed == ["has_secondary_insurance", "primary_paid", "secondary_not_filed"]

    def test_build_bills_secondary_payer(self):
        primary = _paid()
        amounts = lifecycle.secondary_amounts(primary)
        secondary = lifecycle.build_secondary(
            primary, claim_number="CLM-2", amounts=amounts, actor_id="billing-1"
        )

        assert secondary.status == ClaimStatus.DRAFT
        assert secondary.insurance == SECONDARY
        assert secondary.payer_id == "MEDICARE"
        assert secondary.secondary_insurance == {}
        assert secondary.total_charges == primary.total_charges
        assert secondary.primary_paid_amount == Decimal("120.00")
        assert secondary.patient_responsibility == Decimal("30.00")
        assert secondary.procedures is not primary.procedures
        assert primary.status == ClaimStatus.PAID

    def test_build_requires_paid_primary(self):
        primary = _paid(status=ClaimStatus.APPROVED)
        with pytest.raises(BadRequestError, match="must pay"):
            lifecycle.build_secondary(
                primary,
                claim_number="C",
                amounts=lifecycle.secondary_amounts(primary),
                actor_id="u",
            )

    def test_build_requires_secondary_coverage(self):
        primary = _paid(secondary_insurance={})
        with pytest.raises(BadRequestError, match="no secondary insurance"):
            lifecycle.build_secondary(
                primary,
                claim_number="C",
                amounts=lifecycle.secondary_amounts(primary),
                actor_id="u",
            )
