"""Initial PostgreSQL schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create initial schema for the memory graph engine."""

    # 1. Read side populated by account and ingestion connectors
    op.create_table(
        "users",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column(
            "collision_detection_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("idx_users_updated_at", "users", ["updated_at"])

    op.create_table(
        "social_posts",
        sa.Column("post_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("provider", sa.String(length=50), nullable=True),
        sa.PrimaryKeyConstraint("post_id"),
    )
    op.create_index(
        "idx_social_posts_user", "social_posts", ["user_id", "created_at"]
    )

    op.create_table(
        "media_items",
        sa.Column("media_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("media_id"),
    )
    op.create_index("idx_media_items_user", "media_items", ["user_id", "created_at"])

    # 2. Connections: one row per canonical pair
    op.create_table(
        "connections",
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_a_id", sa.Text(), nullable=False),
        sa.Column("user_b_id", sa.Text(), nullable=False),
        sa.Column(
            "connection_types",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "shared_event_count", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("first_shared_event", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_shared_event", sa.DateTime(timezone=True), nullable=True),
        sa.Column("strength", sa.Float(), nullable=False, server_default="0"),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("connection_id"),
        sa.UniqueConstraint("user_a_id", "user_b_id", name="uq_connections_pair"),
        sa.CheckConstraint(
            'user_a_id COLLATE "C" < user_b_id COLLATE "C"',
            name="ck_connections_canonical_order",
        ),
        sa.CheckConstraint("shared_event_count >= 0", name="ck_connections_count"),
    )
    op.create_index("idx_connections_user_b", "connections", ["user_b_id"])

    # 3. Shared events: append-only evidence
    op.create_table(
        "shared_events",
        sa.Column("shared_event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("event_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_hours", sa.Integer(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("user_a_source_type", sa.String(length=50), nullable=True),
        sa.Column("user_a_source_id", sa.Text(), nullable=True),
        sa.Column("user_b_source_type", sa.String(length=50), nullable=True),
        sa.Column("user_b_source_id", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("shared_event_id"),
        sa.ForeignKeyConstraint(
            ["connection_id"],
            ["connections.connection_id"],
            name="fk_shared_events_connection",
        ),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_shared_events_confidence"
        ),
    )
    op.create_index(
        "idx_shared_events_connection",
        "shared_events",
        ["connection_id", "event_date"],
    )

    # 4. Memory collisions: notification records, one per direction
    op.create_table(
        "memory_collisions",
        sa.Column("collision_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("initiator_id", sa.Text(), nullable=False),
        sa.Column("target_id", sa.Text(), nullable=False),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_summary", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("collision_id"),
        sa.UniqueConstraint(
            "initiator_id",
            "target_id",
            "connection_id",
            name="uq_memory_collisions_direction",
        ),
        sa.ForeignKeyConstraint(
            ["connection_id"],
            ["connections.connection_id"],
            name="fk_memory_collisions_connection",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'declined')",
            name="ck_memory_collisions_status",
        ),
    )
    op.create_index(
        "idx_memory_collisions_target", "memory_collisions", ["target_id", "status"]
    )


def downgrade() -> None:
    """Drop memory graph schema."""
    op.drop_index("idx_memory_collisions_target", table_name="memory_collisions")
    op.drop_table("memory_collisions")
    op.drop_index("idx_shared_events_connection", table_name="shared_events")
    op.drop_table("shared_events")
    op.drop_index("idx_connections_user_b", table_name="connections")
    op.drop_table("connections")
    op.drop_index("idx_media_items_user", table_name="media_items")
    op.drop_table("media_items")
    op.drop_index("idx_social_posts_user", table_name="social_posts")
    op.drop_table("social_posts")
    op.drop_index("idx_users_updated_at", table_name="users")
    op.drop_table("users")
