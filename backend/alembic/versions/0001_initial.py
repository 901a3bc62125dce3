"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the identity, consent, privacy request, retention and audit tables
from the SQLAlchemy `Base` metadata.
"""

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables declared on Base.metadata."""
    from alembic import op

    from repositories.database import Base

    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    """Drop all tables declared on Base.metadata.

    WARNING: This drops the audit trail along with everything else.
    """
    from alembic import op

    from repositories.database import Base

    Base.metadata.drop_all(bind=op.get_bind())
