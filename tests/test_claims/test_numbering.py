"""Claim/tracking number formatters and the per-day sequence counter."""

import re
from datetime import datetime, timezone

import pytest

from app.models.claim import ClaimNumberSequence
from app.services.claims.numbering import (
    allocate_claim_number,
    generate_claim_number,
    generate_tracking_number,
    new_tracking_token,
    next_sequence,
)

TS = datetime(2025, 3, 1, 14, 30, 5, tzinfo=timezone.utc)


class TestFormatters:
    def test_claim_number(self):
        assert generate_claim_number(TS, 42) == "CLM-20250301-000042"

    def test_claim_number_is_deterministic(self):
        assert generate_claim_number(TS, 7) == generate_claim_number(TS, 7)

    def test_sequence_must_be_positive(self):
        with pytest.raises(ValueError):
            generate_claim_number(TS, 0)

    def test_tracking_number(self):
        assert generate_tracking_number(TS, "1A2B3C4D") == "TRK-20250301143005-1A2B3C4D"

    def test_tracking_token_shape(self):
        assert re.fullmatch(r"[0-9A-F]{8}", new_tracking_token())


class TestSequence:
    def test_first_value_is_one(self, db):
        assert next_sequence(db, "20250301") == 1

    def test_increments_per_period(self, db):
        assert [next_sequence(db, "20250301") for _ in range(3)] == [1, 2, 3]
        assert next_sequence(db, "20250302") == 1
        assert db.get(ClaimNumberSequence, "20250301").last_value == 3

    def test_allocate_uses_timestamp_period(self, db):
        first = allocate_claim_number(db, TS)
        second = allocate_claim_number(db, TS)
        assert (first, second) == ("CLM-20250301-000001", "CLM-20250301-000002")
