"""activitypub delivery tables

Revision ID: 5b1c9e2a7d40
Revises:
Create Date: 2026-10-19 09:12:44.318502

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5b1c9e2a7d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DELIVERY_STATUSES = ("pending", "sending", "sent", "failed", "dead_lettered")


def upgrade() -> None:
    """Create delivery records, activity documents and actor keys."""
    op.create_table(
        "activitypub_activity",
        sa.Column("activity_id", sa.Text(), nullable=False),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("actor_uri", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("activity_id"),
    )
    op.create_table(
        "activitypub_key",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_uri", sa.Text(), nullable=False),
        sa.Column("private_key_pem", sa.Text(), nullable=False),
        sa.Column("public_key_pem", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("actor_uri"),
    )
    op.create_table(
        "activitypub_delivery",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("activity_id", sa.Text(), nullable=False),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("inbox_uri", sa.Text(), nullable=False),
        sa.Column("actor_uri", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*DELIVERY_STATUSES, name="delivery_status", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("response_status_code", sa.String(length=8), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_token", sa.String(length=32), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "activity_id", "inbox_uri", name="uq_activitypub_delivery_activity_inbox"
        ),
    )
    op.create_index(
        "ix_activitypub_delivery_activity_id",
        "activitypub_delivery",
        ["activity_id"],
    )
    op.create_index(
        "ix_activitypub_delivery_status_next_retry",
        "activitypub_delivery",
        ["status", "next_retry_at"],
    )


def downgrade() -> None:
    """Drop the delivery tables."""
    op.drop_index("ix_activitypub_delivery_status_next_retry", table_name="activitypub_delivery")
    op.drop_index("ix_activitypub_delivery_activity_id", table_name="activitypub_delivery")
    op.drop_table("activitypub_delivery")
    op.drop_table("activitypub_key")
    op.drop_table("activitypub_activity")
