"""billing_baseline_schema

Revision ID: 4d1e8b2a7c35
Revises: 
Create Date: 2026-10-17 09:12:41.532118

"""
from typing import Sequence, Union

from alembic import op

from shift_billing.db_base import Base
import shift_billing.models  # noqa: F401 - required to register all model metadata


# revision identifiers, used by Alembic.
revision: str = '4d1e8b2a7c35'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
