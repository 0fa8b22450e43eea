"""user collaborators

Revision ID: 0002_user_collaborators
Revises: 0001_init
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_user_collaborators"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "user_collaborators",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("collaborator_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("user_id", "collaborator_id", name="ux_user_collaborator_pair"),
  )
  op.create_index("ix_user_collaborators_user_id", "user_collaborators", ["user_id"], unique=False)
  op.create_index("ix_user_collaborators_collaborator_id", "user_collaborators", ["collaborator_id"], unique=False)


def downgrade() -> None:
  op.drop_table("user_collaborators")
