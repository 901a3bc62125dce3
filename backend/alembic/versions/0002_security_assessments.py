"""security assessments

Revision ID: 0002_security_assessments
Revises: 0001_initial
Create Date: 2026-10-18 00:00:00.000000

Adds the table holding periodic security assessment results.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_security_assessments"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # 0001 builds from the live metadata, so fresh databases already have it
    if sa.inspect(op.get_bind()).has_table("security_assessments"):
        return
    op.create_table(
        "security_assessments",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("overall_status", sa.String(10), nullable=False),
        sa.Column("checks", sa.JSON(), nullable=False),
        sa.Column("vulnerabilities", sa.JSON(), nullable=False),
        sa.Column("recommendations", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_security_assessments_created", "security_assessments", ["created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_security_assessments_created", table_name="security_assessments")
    op.drop_table("security_assessments")
