"""Create api_audit_log table

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Append-only log of API and access events written by the audit recorder.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        "api_audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("api_key_id", sa.String(length=255), nullable=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("http_status", sa.Integer(), nullable=False),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("request_body", sa.JSON(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_api_audit_log_api_key_id", "api_audit_log", ["api_key_id"])
    op.create_index("ix_api_audit_log_user_id", "api_audit_log", ["user_id"])
    op.create_index("ix_api_audit_log_action", "api_audit_log", ["action"])
    op.create_index("ix_api_audit_log_created_at", "api_audit_log", ["created_at"])


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_index("ix_api_audit_log_created_at", table_name="api_audit_log")
    op.drop_index("ix_api_audit_log_action", table_name="api_audit_log")
    op.drop_index("ix_api_audit_log_user_id", table_name="api_audit_log")
    op.drop_index("ix_api_audit_log_api_key_id", table_name="api_audit_log")
    op.drop_table("api_audit_log")
