"""time_entry_check_constraints

Revision ID: c91d7f3a5e22
Revises: 8b4e61d0c2f7
Create Date: 2026-10-06 14:02:55.316940

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c91d7f3a5e22'
down_revision: Union[str, Sequence[str], None] = '8b4e61d0c2f7'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.create_check_constraint(
        "ck_time_entries_clock_out_after_clock_in",
        "time_entries",
        "clock_out_at IS NULL OR clock_out_at > clock_in_at",
    )
    op.create_check_constraint(
        "ck_time_entries_version_positive",
        "time_entries",
        "version >= 1",
    )


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.drop_constraint("ck_time_entries_version_positive", "time_entries", type_="check")
    op.drop_constraint("ck_time_entries_clock_out_after_clock_in", "time_entries", type_="check")
