"""initial_schema_baseline

Revision ID: 202610170000
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates every table from the current model definitions: the directory
tables (centers, users, patients, counters), the billing tables (billings,
service charge lines, payment history, workflow stages) and the lab tables
(test requests, report versions, reviews, status history, communications).
"""
from typing import Sequence, Union

from alembic import op

from core.database import Base
import models  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '202610170000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create all tables, then PostgreSQL-only indexes.

    JSONB columns get GIN indexes so lab queues can filter on test types.
    """
    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)

    if bind.dialect.name == 'postgresql':
        op.create_index(
            'idx_test_requests_test_types_gin',
            'test_requests',
            ['test_types'],
            postgresql_using='gin'
        )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        op.drop_index('idx_test_requests_test_types_gin', table_name='test_requests')
    Base.metadata.drop_all(bind=bind)
