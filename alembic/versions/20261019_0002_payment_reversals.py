"""add payments.reverses_payment_id

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 15:40:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0002"
down_revision: Union[str, Sequence[str], None] = "20261019_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("payments", sa.Column("reverses_payment_id", sa.Integer(), nullable=True))
    op.create_foreign_key(
        "fk_payments_reverses_payment_id",
        "payments",
        "payments",
        ["reverses_payment_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index(op.f("ix_payments_reverses_payment_id"), "payments", ["reverses_payment_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_payments_reverses_payment_id"), table_name="payments")
    op.drop_constraint("fk_payments_reverses_payment_id", "payments", type_="foreignkey")
    op.drop_column("payments", "reverses_payment_id")
