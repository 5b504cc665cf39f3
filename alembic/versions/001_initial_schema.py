"""Initial schema: connections, mappings, events, id maps, locks, audit log.

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
    # Connections
    op.create_table(
        "connections",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("source_type", sa.String(50), nullable=False, server_default="smartsuite"),
        sa.Column("source_base_id", sa.String(100)),
        sa.Column("source_table_id", sa.String(100)),
        sa.Column("source_api_key_encrypted", sa.Text),
        sa.Column("target_type", sa.String(50), nullable=False, server_default="webflow"),
        sa.Column("target_site_id", sa.String(100)),
        sa.Column("target_collection_id", sa.String(100), nullable=False),
        sa.Column("target_token_encrypted", sa.Text, nullable=False),
        sa.Column("webhook_secret_encrypted", sa.Text, nullable=False),
        sa.Column("rate_limit_per_min", sa.Integer, nullable=False, server_default="50"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="5"),
        sa.Column("retry_backoff_ms", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("last_success_at", sa.DateTime(timezone=True)),
        sa.Column("last_error_at", sa.DateTime(timezone=True)),
        sa.Column("last_error_message", sa.Text),
        sa.Column("consecutive_errors", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('active', 'paused', 'error', 'archived')",
            name="ck_connections_status",
        ),
        sa.CheckConstraint("rate_limit_per_min > 0", name="ck_connections_rate_limit"),
        sa.CheckConstraint("max_retries >= 0", name="ck_connections_max_retries"),
    )
    op.create_index("ix_connections_status", "connections", ["status"])

    # Mappings (at most one active per connection)
    op.create_table(
        "mappings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "connection_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("connections.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("field_map", postgresql.JSONB, nullable=False),
        sa.Column("slug_template", sa.String(500)),
        sa.Column("required_fields", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("field_types", postgresql.JSONB),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "uq_mappings_active_per_connection",
        "mappings",
        ["connection_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    # Events
    op.create_table(
        "events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "connection_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("connections.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("external_source", sa.String(50), nullable=False, server_default="smartsuite"),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False, unique=True),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("webhook_timestamp", sa.DateTime(timezone=True)),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("retry_after", sa.DateTime(timezone=True)),
        sa.Column("error", sa.Text),
        sa.Column("error_traceback", sa.Text),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("duration_ms", sa.Integer),
        sa.Column("target_item_id", sa.String(100)),
        sa.Column("target_response", postgresql.JSONB),
        sa.Column("warnings", postgresql.JSONB),
        sa.Column("partial_success", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("queued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'success', 'failed', 'dead_letter')",
            name="ck_events_status",
        ),
        sa.CheckConstraint("attempts >= 0", name="ck_events_attempts"),
    )
    op.create_index("ix_events_status_retry_after", "events", ["status", "retry_after"])
    op.create_index("ix_events_connection_id", "events", ["connection_id"])
    op.create_index("ix_events_queued_at", "events", ["queued_at"])
    op.create_index("ix_events_external_id", "events", ["external_id"])

    # Source record -> Webflow item cross-reference
    op.create_table(
        "id_maps",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "connection_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("connections.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("external_source", sa.String(50), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("target_item_id", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "connection_id", "external_source", "external_id",
            name="uq_id_maps_connection_source_external",
        ),
    )
    op.create_index("ix_id_maps_target_item_id", "id_maps", ["target_item_id"])

    # Distributed locks
    op.create_table(
        "distributed_locks",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("acquired_by", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_distributed_locks_expires_at", "distributed_locks", ["expires_at"])

    # Audit log
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "connection_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("connections.id", ondelete="SET NULL"),
        ),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("actor", sa.String(50), nullable=False, server_default="system"),
        sa.Column("data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action_created_at", "audit_logs", ["action", "created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("distributed_locks")
    op.drop_table("id_maps")
    op.drop_table("events")
    op.drop_table("mappings")
    op.drop_table("connections")
