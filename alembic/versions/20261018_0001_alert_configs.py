"""Alert configuration table.

Revision ID: 0001_alert_configs
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001_alert_configs"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "alert_configs",
        sa.Column("destination_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("token_address", sa.String(42), nullable=False),
        sa.Column("pair_address", sa.String(66), nullable=True),
        sa.Column("pair_addresses", sa.JSON(), nullable=False),
        sa.Column("emoji", sa.String(16), nullable=False),
        sa.Column("min_buy_usd", sa.Numeric(18, 2), nullable=False),
        sa.Column("max_buy_usd", sa.Numeric(18, 2), nullable=True),
        sa.Column("dollars_per_emoji", sa.Numeric(18, 2), nullable=False),
        sa.Column("cooldown_seconds", sa.Numeric(10, 2), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("image_file_id", sa.String(255), nullable=True),
        sa.Column("animation_file_id", sa.String(255), nullable=True),
        sa.Column("group_link", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("destination_id"),
    )
    op.create_index("idx_alert_configs_chain_token", "alert_configs", ["chain", "token_address"])


def downgrade() -> None:
    op.drop_index("idx_alert_configs_chain_token", table_name="alert_configs")
    op.drop_table("alert_configs")
