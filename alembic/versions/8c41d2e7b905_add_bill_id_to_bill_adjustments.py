"""add bill_id to bill_adjustments

Revision ID: 8c41d2e7b905
Revises: 3f9a1c7d2e40
Create Date: 2026-10-20
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "8c41d2e7b905"
down_revision: Union[str, Sequence[str], None] = "3f9a1c7d2e40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Step 1: Add nullable bill_id
    op.add_column("bill_adjustments", sa.Column("bill_id", sa.Integer, nullable=True))

    # Step 2: Attach existing adjustments to the newest bill for their employee and period
    conn = op.get_bind()
    conn.execute(
        sa.text(
            "UPDATE bill_adjustments SET bill_id = ("
            "SELECT MAX(b.id) FROM bills b WHERE b.employee_id = bill_adjustments.employee_id "
            "AND b.period_end = bill_adjustments.period_end)"
        )
    )

    # Step 3: NOT NULL + foreign key
    with op.batch_alter_table("bill_adjustments") as batch_op:
        batch_op.alter_column("bill_id", existing_type=sa.Integer, nullable=False)
        batch_op.create_foreign_key("fk_bill_adjustments_bill_id", "bills", ["bill_id"], ["id"])
    op.create_index("ix_bill_adjustments_bill_id", "bill_adjustments", ["bill_id"])


def downgrade() -> None:
    op.drop_index("ix_bill_adjustments_bill_id", table_name="bill_adjustments")
    with op.batch_alter_table("bill_adjustments") as batch_op:
        batch_op.drop_constraint("fk_bill_adjustments_bill_id", type_="foreignkey")
        batch_op.drop_column("bill_id")
