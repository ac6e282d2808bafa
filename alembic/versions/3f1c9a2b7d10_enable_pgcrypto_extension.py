"""Enable pgcrypto extension

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-18 09:12:40.118304

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Enable pgcrypto extension for webhook secret encryption."""
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')


def downgrade() -> None:
    """Disable pgcrypto extension."""
    # Only succeeds once nothing depends on it
    op.execute('DROP EXTENSION IF EXISTS pgcrypto')
