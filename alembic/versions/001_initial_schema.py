"""Initial schema — webhook events, audit trail, dedupe, retry queue, dead letters.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Webhook events - one row per inbound delivery
    op.create_table(
        "webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("resource", sa.String(100)),
        sa.Column("external_event_id", sa.String(255)),
        sa.Column("topic", sa.String(255)),
        sa.Column("raw_payload", sa.LargeBinary, nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("validation_status", sa.String(20), nullable=False, server_default="UNVALIDATED"),
        sa.Column("duplicate_of", postgresql.UUID(as_uuid=True), sa.ForeignKey("webhook_events.id")),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("failed_attempts", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_webhook_events_provider", "webhook_events", ["provider"])
    op.create_index("ix_webhook_events_external_event_id", "webhook_events", ["external_event_id"])
    op.create_index("ix_webhook_events_payload_hash", "webhook_events", ["payload_hash"])
    op.create_index("ix_webhook_events_correlation_id", "webhook_events", ["correlation_id"])
    op.create_index("ix_webhook_events_provider_received_at", "webhook_events", ["provider", "received_at"])

    # Audit trail - append-only
    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("webhook_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("webhook_events.id"), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_webhook_occurred", "audit_log_entries", ["webhook_id", "occurred_at"])
    op.create_index("ix_audit_status_occurred", "audit_log_entries", ["status", "occurred_at"])
    op.create_index("ix_audit_occurred_at", "audit_log_entries", ["occurred_at"])

    # Enforce append-only at the database level as well
    op.execute("""
        CREATE OR REPLACE FUNCTION audit_log_entries_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_log_entries is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_audit_log_entries_immutable
        BEFORE UPDATE OR DELETE ON audit_log_entries
        FOR EACH ROW EXECUTE FUNCTION audit_log_entries_immutable();
    """)

    # Dedupe records - the composite key is the atomic reservation
    op.create_table(
        "dedup_records",
        sa.Column("provider", sa.String(50), primary_key=True),
        sa.Column("external_event_id", sa.String(255), primary_key=True),
        sa.Column("webhook_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("webhook_events.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_dedup_records_created_at", "dedup_records", ["created_at"])

    # Retry queue
    op.create_table(
        "retry_tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("webhook_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("webhook_events.id"), nullable=False),
        sa.Column("attempt_number", sa.Integer, nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_retry_tasks_webhook_id", "retry_tasks", ["webhook_id"])
    op.create_index("ix_retry_tasks_next_run_at", "retry_tasks", ["next_run_at"])

    # Dead letters
    op.create_table(
        "dead_letters",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("webhook_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("webhook_events.id"), nullable=False, unique=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("topic", sa.String(255)),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("failure_kind", sa.String(20), nullable=False),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_dead_letters_provider", "dead_letters", ["provider"])
    op.create_index("ix_dead_letters_created_at", "dead_letters", ["created_at"])


def downgrade() -> None:
    op.drop_table("dead_letters")
    op.drop_table("retry_tasks")
    op.drop_table("dedup_records")
    op.execute("DROP TRIGGER IF EXISTS trg_audit_log_entries_immutable ON audit_log_entries")
    op.execute("DROP FUNCTION IF EXISTS audit_log_entries_immutable()")
    op.drop_table("audit_log_entries")
    op.drop_table("webhook_events")
