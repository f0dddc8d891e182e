"""
AuditEvent: the immutable audit log.

CRITICAL DESIGN RULE:
  This table is append-only. No UPDATE or DELETE statements should ever
  be issued against it. SQLAlchemy relationships deliberately omit
  cascade="all, delete-orphan" for this reason.

  The DB-level server_default on created_at (not application code) ensures
  the timestamp is authoritative and cannot be spoofed.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, JSONPortable


class ActorRole:
    SYSTEM = "system"
    PATIENT = "patient"
    PRACTITIONER = "practitioner"
    BILLING = "billing"
    ADMIN = "admin"

    ALL = [SYSTEM, PATIENT, PRACTITIONER, BILLING, ADMIN]


class AuditEvent(Base):
    """
    Immutable record of every meaningful state change in the system.

    entity_type + entity_id: the thing that changed
    event_type: what happened (past-tense verb, e.g. "claim.submitted")
    actor_*: who caused it
    payload: JSON snapshot of relevant state; designed so you can
             reconstruct a claim's history without joining the reports table.
    """

    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── What changed ─────────────────────────────────────────────────────────
    entity_type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="claim | scrub_report | ...",
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment=(
            "Past-tense dot-namespaced: claim.created, claim.scrubbed, "
            "claim.submitted, claim.resubmitted, claim.status_changed, ..."
        ),
    )

    # ── Who caused it ────────────────────────────────────────────────────────
    actor_role: Mapped[str] = mapped_column(
        String(32), nullable=False, comment="system | patient | practitioner | billing | admin"
    )
    actor_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Identity user id if human-triggered; NULL for system events",
    )

    # ── State snapshot ────────────────────────────────────────────────────────
    payload: Mapped[dict] = mapped_column(
        JSONPortable,
        nullable=False,
        default=dict,
    )

    # ── Timestamp (server-authoritative: never set by application code) ──────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent event={self.event_type!r} "
            f"entity={self.entity_type}:{self.entity_id} "
            f"actor={self.actor_role}>"
        )
