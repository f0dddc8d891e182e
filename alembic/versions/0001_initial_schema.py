"""Initial schema: claims, numbering, scrub reports, audit log

Revision ID: 0001
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from alembic import op

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ── claims ────────────────────────────────────────────────────────────────
    op.create_table(
        "claims",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("claim_number", sa.String(32), nullable=False, unique=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("patient_id", sa.String(64), nullable=False),
        sa.Column("provider_id", sa.String(64), nullable=True),
        sa.Column("payer_id", sa.String(64), nullable=True),
        sa.Column("patient", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("provider", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("insurance", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "secondary_insurance",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="{payer_id, payer_name, policy_number, group_number, plan_name, timely_filing_limit}",
        ),
        sa.Column("service_date", sa.Date, nullable=True),
        sa.Column("place_of_service", sa.String(8), nullable=True),
        sa.Column(
            "diagnosis_codes", postgresql.JSONB, nullable=False, server_default="[]"
        ),
        sa.Column(
            "procedures",
            postgresql.JSONB,
            nullable=False,
            server_default="[]",
            comment="[{code, description, charge, units, modifiers, diagnosis_pointers, service_date}]",
        ),
        sa.Column(
            "total_charges", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("notes", sa.Text, nullable=True),
        # Scrubbing bookkeeping
        sa.Column(
            "scrub_status", sa.String(32), nullable=False, server_default="not_scrubbed"
        ),
        sa.Column("last_scrub_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scrub_error_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "scrub_warning_count", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column(
            "scrub_auto_fixed_count", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("latest_report_id", postgresql.UUID(as_uuid=True), nullable=True),
        # Submission
        sa.Column("submitted_by", sa.String(64), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tracking_number", sa.String(64), nullable=True),
        # Adjudication / payment
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("payment_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_number", sa.String(64), nullable=True),
        sa.Column("era_number", sa.String(64), nullable=True),
        sa.Column("denial_reason", sa.Text, nullable=True),
        sa.Column("denial_code", sa.String(32), nullable=True),
        # Resubmission lineage
        sa.Column(
            "original_claim_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("claims.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("resubmission_reason", sa.Text, nullable=True),
        sa.Column(
            "resubmission_count", sa.Integer, nullable=False, server_default="0"
        ),
        # Coordination of benefits
        sa.Column(
            "primary_claim_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("claims.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("primary_paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "patient_responsibility", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("updated_by", sa.String(64), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_claims_claim_number", "claims", ["claim_number"], unique=True)
    op.create_index("ix_claims_status", "claims", ["status"])
    op.create_index("ix_claims_patient_id", "claims", ["patient_id"])
    op.create_index("ix_claims_provider_id", "claims", ["provider_id"])
    op.create_index("ix_claims_payer_id", "claims", ["payer_id"])
    op.create_index("ix_claims_service_date", "claims", ["service_date"])
    op.create_index("ix_claims_scrub_status", "claims", ["scrub_status"])
    op.create_index("ix_claims_tracking_number", "claims", ["tracking_number"])
    op.create_index("ix_claims_original_claim_id", "claims", ["original_claim_id"])
    op.create_index("ix_claims_primary_claim_id", "claims", ["primary_claim_id"])
    op.create_index("ix_claims_created_at", "claims", ["created_at"])

    # ── claim_number_sequences ────────────────────────────────────────────────
    op.create_table(
        "claim_number_sequences",
        sa.Column("period", sa.String(8), primary_key=True),
        sa.Column("last_value", sa.Integer, nullable=False, server_default="0"),
    )

    # ── scrub_reports ─────────────────────────────────────────────────────────
    op.create_table(
        "scrub_reports",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "claim_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("claims.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("claim_number", sa.String(32), nullable=False),
        sa.Column(
            "status",
            sa.String(32),
            nullable=False,
            comment="pass | pass_with_warnings | fail | fixed",
        ),
        sa.Column("errors", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("warnings", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("info", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "fixed_issues", postgresql.JSONB, nullable=False, server_default="[]"
        ),
        sa.Column("summary", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "categories",
            postgresql.JSONB,
            nullable=False,
            server_default="[]",
            comment="Ordered [{category, errors, warnings, info, fixed}]",
        ),
        sa.Column(
            "config",
            postgresql.JSONB,
            nullable=False,
            server_default="{}",
            comment="{auto_fix, categories}",
        ),
        sa.Column("duration_ms", sa.Integer, nullable=False, server_default="0"),
        sa.Column("scrubbed_by", sa.String(64), nullable=True),
        sa.Column(
            "scrubbed_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "claim_snapshot", postgresql.JSONB, nullable=False, server_default="{}"
        ),
        sa.Column("actions", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "recommendations", postgresql.JSONB, nullable=False, server_default="[]"
        ),
        sa.Column(
            "previous_report_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("scrub_reports.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    op.create_index("ix_scrub_reports_claim_id", "scrub_reports", ["claim_id"])
    op.create_index("ix_scrub_reports_claim_number", "scrub_reports", ["claim_number"])
    op.create_index("ix_scrub_reports_status", "scrub_reports", ["status"])
    op.create_index("ix_scrub_reports_scrubbed_at", "scrub_reports", ["scrubbed_at"])

    # ── audit_events ──────────────────────────────────────────────────────────
    op.create_table(
        "audit_events",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(128), nullable=False),
        sa.Column("actor_role", sa.String(32), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("audit_events")
    op.drop_table("scrub_reports")
    op.drop_table("claim_number_sequences")
    op.drop_table("claims")
