# ruff: noqa: I001
"""Record the connector (sms or email) each transaction arrived through.

Revision ID: 0002_transaction_source
Revises: 0001_ledger_core
Create Date: 2026-10-18
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_transaction_source"
down_revision: str | None = "0001_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    with op.batch_alter_table("ledger_transactions") as batch:
        batch.add_column(
            sa.Column("source", sa.String(length=8), nullable=False, server_default="sms")
        )
    # Existing email rows are only recognizable by their parser tag
    op.execute(
        "UPDATE ledger_transactions SET source = 'email' WHERE parser_type LIKE 'email-model%'"
    )


def downgrade() -> None:
    with op.batch_alter_table("ledger_transactions") as batch:
        batch.drop_column("source")
