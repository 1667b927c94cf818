"""add lease_id to uploaded files

Revision ID: 8c41d09e5b7f
Revises: 3b8e21c4d7a0
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "8c41d09e5b7f"
down_revision: Union[str, Sequence[str], None] = "3b8e21c4d7a0"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("files_uploaded_file", sa.Column("lease_id", sa.Uuid(as_uuid=True), nullable=True))


def downgrade() -> None:
    op.drop_column("files_uploaded_file", "lease_id")
