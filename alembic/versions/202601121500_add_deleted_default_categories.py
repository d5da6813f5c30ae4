"""add deleted default category tombstones

Revision ID: 202601121500
Revises: 202601100900
Create Date: 2026-01-12 15:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601121500"
down_revision = "202601100900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "deleted_default_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category_name", sa.String(length=100), nullable=False),
        sa.Column(
            "category_type",
            sa.Enum("income", "expense", name="transactiontype"),
            nullable=False,
        ),
        sa.Column(
            "deleted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "user_id",
            "category_name",
            "category_type",
            name="uq_deleted_default_user_name_type",
        ),
    )


def downgrade():
    op.drop_table("deleted_default_categories")
