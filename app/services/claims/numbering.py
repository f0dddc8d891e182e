"""
Claim and tracking number generation.

The formatters are pure: (timestamp, sequence) -> identifier. The sequence
itself comes from claim_number_sequences, one row per UTC day, incremented
under a row lock. Two requests racing to create the day's first row are
resolved by the primary key: the loser's savepoint rolls back and it retries
against the row the winner inserted.
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.claim import ClaimNumberSequence

logger = logging.getLogger(__name__)

CLAIM_PREFIX = "CLM"
TRACKING_PREFIX = "TRK"
_MAX_ATTEMPTS = 3


def generate_claim_number(timestamp: datetime, sequence: int) -> str:
    """CLM-20250301-000042"""
    if sequence < 1:
        raise ValueError("sequence must be >= 1")
    return f"{CLAIM_PREFIX}-{timestamp:%Y%m%d}-{sequence:06d}"


def generate_tracking_number(timestamp: datetime, token: str) -> str:
    """TRK-20250301143000-1A2B3C4D"""
    return f"{TRACKING_PREFIX}-{timestamp:%Y%m%d%H%M%S}-{token}"


def new_tracking_token() -> str:
    return secrets.token_hex(4).upper()


def next_sequence(db: Session, period: str) -> int:
    """Atomically increment and return the counter for `period`."""
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        row = db.execute(
            select(ClaimNumberSequence)
            .where(ClaimNumberSequence.period == period)
            .with_for_update()
        ).scalar_one_or_none()

        if row is not None:
            row.last_value += 1
            db.flush()
            return row.last_value

        try:
            with db.begin_nested():
                db.add(ClaimNumberSequence(period=period, last_value=1))
            return 1
        except IntegrityError:
            logger.info(
                "Sequence row for %s created concurrently (attempt %d): retrying",
                period,
                attempt,
            )

    raise RuntimeError(f"Could not allocate a claim number for period {period}")


def allocate_claim_number(db: Session, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return generate_claim_number(now, next_sequence(db, f"{now:%Y%m%d}"))
