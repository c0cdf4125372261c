"""Create the articles table.

Creates ``articles``, the persisted outcome of a scrape request, with its
lifecycle columns and the ``(owner_id, url)`` uniqueness constraint that makes
duplicate submissions converge on one row.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the articles table and its indexes."""
    op.create_table(
        "articles",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        # Users live in an external service; no foreign key.
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        # Extracted content
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("text_content", sa.Text(), nullable=True),
        sa.Column("byline", sa.Text(), nullable=True),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("site_name", sa.Text(), nullable=True),
        sa.Column("favicon", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("reading_time", sa.Integer(), nullable=True),
        sa.Column("scraped_with", sa.String(50), nullable=True),
        # Lifecycle
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'PENDING'"),
        ),
        sa.Column("failure_kind", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        # Job bookkeeping
        sa.Column("job_id", sa.String(64), nullable=True),
        sa.Column(
            "attempts",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("processing_token", sa.String(64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancel_requested",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.UniqueConstraint("owner_id", "url", name="uq_articles_owner_url"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name="ck_articles_status",
        ),
    )
    op.create_index("idx_articles_owner_id", "articles", ["owner_id"])
    op.create_index("idx_articles_status", "articles", ["status"])
    op.create_index("idx_articles_created_at", "articles", ["created_at"])


def downgrade() -> None:
    """Drop the articles table."""
    op.drop_index("idx_articles_created_at", table_name="articles")
    op.drop_index("idx_articles_status", table_name="articles")
    op.drop_index("idx_articles_owner_id", table_name="articles")
    op.drop_table("articles")
