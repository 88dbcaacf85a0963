"""Create meeting scheduling tables.

Revision ID: 001_meetings
Revises:
Create Date: 2026-10-18

Creates two tables:
- meetings: 1:1 meeting requests and their lifecycle status
- meeting_chat_tokens: One chat access token per started meeting

Indexes cover the conflict scan (conference + proposed_time + status), the
per-participant listings, and the start-time notifier scan.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_meetings"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── meetings table ───────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("conference_id", sa.String(64), nullable=False),
        sa.Column("requester_id", sa.String(64), nullable=False),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("proposed_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "duration_minutes",
            sa.Integer(),
            server_default=sa.text("30"),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("meeting_location", sa.String(200), nullable=True),
        sa.Column(
            "status",
            sa.String(20),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column("start_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'cancelled', 'completed')",
            name="ck_meetings_status",
        ),
        sa.CheckConstraint("requester_id <> recipient_id", name="ck_meetings_two_parties"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_meetings_duration_positive"),
    )

    op.create_index("ix_meetings_conference_status", "meetings", ["conference_id", "status"])
    op.create_index("ix_meetings_requester_status", "meetings", ["requester_id", "status"])
    op.create_index("ix_meetings_recipient_status", "meetings", ["recipient_id", "status"])
    op.create_index("ix_meetings_proposed_time", "meetings", ["proposed_time"])
    op.create_index(
        "ix_meetings_conference_time_status",
        "meetings",
        ["conference_id", "proposed_time", "status"],
    )
    # Start-time notifier scan: accepted, not yet announced
    op.execute(
        "CREATE INDEX ix_meetings_start_due ON meetings(proposed_time) "
        "WHERE status = 'accepted' AND start_notified_at IS NULL"
    )

    # ── meeting_chat_tokens table ────────────────────────────────────────

    op.create_table(
        "meeting_chat_tokens",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("meeting_id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("token", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_meeting_chat_tokens_expires_at", "meeting_chat_tokens", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_table("meeting_chat_tokens")
    op.execute("DROP INDEX IF EXISTS ix_meetings_start_due")
    op.drop_table("meetings")
