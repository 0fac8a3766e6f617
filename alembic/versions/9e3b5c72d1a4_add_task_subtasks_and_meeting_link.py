"""Add subtasks and meeting_link to tasks

Revision ID: 9e3b5c72d1a4
Revises: 4a9e1c0d7b35
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9e3b5c72d1a4"
down_revision: Union[str, Sequence[str], None] = "4a9e1c0d7b35"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column("tasks", sa.Column("subtasks", sa.JSON(), nullable=False, server_default="[]"))
    op.add_column("tasks", sa.Column("meeting_link", sa.Text(), nullable=True))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column("tasks", "meeting_link")
    op.drop_column("tasks", "subtasks")
