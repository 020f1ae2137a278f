"""Student upgrades, admin flag and unit conversions

Revision ID: 002_students_unit_conversions
Revises: 001_initial_schema
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_students_unit_conversions"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "users",
        sa.Column("is_admin", sa.Boolean, nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "students",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False),
        sa.Column("card_number", sa.String(40), nullable=False),
        sa.Column("id_front_key", sa.String(255), nullable=False),
        sa.Column("id_front_url", sa.String(500), nullable=False),
        sa.Column("id_back_key", sa.String(255), nullable=False),
        sa.Column("id_back_url", sa.String(500), nullable=False),
        sa.Column("process", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("account_balance", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "unit_conversions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("from_unit_id", sa.Integer, sa.ForeignKey("units.id"), nullable=False),
        sa.Column("to_unit_id", sa.Integer, sa.ForeignKey("units.id"), nullable=False),
        sa.Column("factor", sa.Float, nullable=False),
        sa.UniqueConstraint("from_unit_id", "to_unit_id", name="uq_unit_conversions_pair"),
    )


def downgrade() -> None:
    op.drop_table("unit_conversions")
    op.drop_table("students")
    op.drop_column("users", "is_admin")
