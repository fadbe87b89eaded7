"""clock_event_and_audit_immutability_triggers

Revision ID: 8b4e61d0c2f7
Revises: 3f1c2a9d7b10
Create Date: 2026-10-05 09:31:07.880512

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b4e61d0c2f7'
down_revision: Union[str, Sequence[str], None] = '3f1c2a9d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_TABLES = ("clock_events", "audit_records")


def upgrade() -> None:
    """Upgrade schema."""
    if op.get_bind().dialect.name != "postgresql":
        return

    for table in _TABLES:
        op.execute(
            f"""
            CREATE OR REPLACE FUNCTION {table}_block_mutation()
            RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION '{table} is immutable';
            END;
            $$ LANGUAGE plpgsql;

            DROP TRIGGER IF EXISTS trg_{table}_block_update ON {table};
            CREATE TRIGGER trg_{table}_block_update
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION {table}_block_mutation();

            DROP TRIGGER IF EXISTS trg_{table}_block_delete ON {table};
            CREATE TRIGGER trg_{table}_block_delete
            BEFORE DELETE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION {table}_block_mutation();
            """
        )


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name != "postgresql":
        return

    for table in _TABLES:
        op.execute(
            f"""
            DROP TRIGGER IF EXISTS trg_{table}_block_update ON {table};
            DROP TRIGGER IF EXISTS trg_{table}_block_delete ON {table};
            DROP FUNCTION IF EXISTS {table}_block_mutation();
            """
        )
