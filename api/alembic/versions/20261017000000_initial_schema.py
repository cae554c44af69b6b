"""story view counters and analytics events

Revision ID: 20261017000000
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261017000000"
down_revision = None
branch_labels = None
depends_on = None


TRACK_STORY_VIEW_FUNCTION = """
CREATE OR REPLACE FUNCTION track_story_view(p_story_id text, p_visitor_id text)
RETURNS TABLE (total_views integer, unique_views integer, is_unique boolean)
LANGUAGE plpgsql
AS $$
#variable_conflict use_column
DECLARE
    v_inserted integer;
    v_is_unique boolean;
BEGIN
    INSERT INTO story_unique_visitors (story_id, visitor_id, created_at)
    VALUES (p_story_id, p_visitor_id, now())
    ON CONFLICT (story_id, visitor_id) DO NOTHING;

    GET DIAGNOSTICS v_inserted = ROW_COUNT;
    v_is_unique := v_inserted > 0;

    RETURN QUERY
    INSERT INTO story_views AS sv (story_id, total_views, unique_views, last_viewed_at)
    VALUES (p_story_id, 1, CASE WHEN v_is_unique THEN 1 ELSE 0 END, now())
    ON CONFLICT (story_id) DO UPDATE
        SET total_views = sv.total_views + 1,
            unique_views = sv.unique_views + CASE WHEN v_is_unique THEN 1 ELSE 0 END,
            last_viewed_at = now()
    RETURNING sv.total_views, sv.unique_views, v_is_unique;
END;
$$;
"""


def upgrade() -> None:
    op.create_table(
        "analytics_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("page_path", sa.String(length=500), nullable=True),
        sa.Column("page_title", sa.String(length=500), nullable=True),
        sa.Column("visitor_id", sa.String(length=64), nullable=True),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("ip_hash", sa.String(length=64), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("referrer_domain", sa.String(length=255), nullable=True),
        sa.Column("utm_source", sa.String(length=255), nullable=True),
        sa.Column("utm_medium", sa.String(length=255), nullable=True),
        sa.Column("utm_campaign", sa.String(length=255), nullable=True),
        sa.Column("device_type", sa.String(length=20), nullable=True),
        sa.Column("browser", sa.String(length=64), nullable=True),
        sa.Column("os", sa.String(length=64), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_analytics_events_event_type", "analytics_events", ["event_type"])
    op.create_index("ix_analytics_events_visitor_id", "analytics_events", ["visitor_id"])
    op.create_index("ix_analytics_events_created_at", "analytics_events", ["created_at"])
    op.create_index(
        "ix_analytics_events_type_created",
        "analytics_events",
        ["event_type", "created_at"],
    )

    op.create_table(
        "story_views",
        sa.Column("story_id", sa.String(length=255), primary_key=True),
        sa.Column("total_views", sa.Integer(), server_default="0", nullable=False),
        sa.Column("unique_views", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_views >= 0", name="ck_story_views_total_non_negative"),
        sa.CheckConstraint("unique_views >= 0", name="ck_story_views_unique_non_negative"),
        sa.CheckConstraint("unique_views <= total_views", name="ck_story_views_unique_le_total"),
    )

    op.create_table(
        "story_unique_visitors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("story_id", sa.String(length=255), nullable=False),
        sa.Column("visitor_id", sa.String(length=64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "story_id", "visitor_id", name="uq_story_unique_visitors_story_visitor"
        ),
    )

    op.create_table(
        "story_recent_views",
        sa.Column("story_id", sa.String(length=255), primary_key=True),
        sa.Column("visitor_id", sa.String(length=64), primary_key=True),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_story_recent_views_last_viewed_at", "story_recent_views", ["last_viewed_at"]
    )

    # Atomic increment lives in the database; other dialects use the
    # application-level fallback.
    if op.get_bind().dialect.name == "postgresql":
        op.execute(TRACK_STORY_VIEW_FUNCTION)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP FUNCTION IF EXISTS track_story_view(text, text)")

    op.drop_index("ix_story_recent_views_last_viewed_at", table_name="story_recent_views")
    op.drop_table("story_recent_views")
    op.drop_table("story_unique_visitors")
    op.drop_table("story_views")
    op.drop_index("ix_analytics_events_type_created", table_name="analytics_events")
    op.drop_index("ix_analytics_events_created_at", table_name="analytics_events")
    op.drop_index("ix_analytics_events_visitor_id", table_name="analytics_events")
    op.drop_index("ix_analytics_events_event_type", table_name="analytics_events")
    op.drop_table("analytics_events")
