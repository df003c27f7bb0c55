"""Create users and authenticator_devices tables.

Revision ID: b7e4c91d2a06
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlmodel.sql.sqltypes import AutoString

# revision identifiers, used by Alembic
revision = "b7e4c91d2a06"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("pk", sa.Integer(), primary_key=True),
        sa.Column("id", AutoString(), nullable=False),
        sa.Column("email", AutoString(), nullable=False),
        sa.Column("challenge_data", AutoString(), nullable=False, server_default=""),
        sa.Column("challenge_valid_until", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("id", "email", name="uq_users_id_email"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "authenticator_devices",
        sa.Column("pk", sa.Integer(), primary_key=True),
        sa.Column("user_pk", sa.Integer(), sa.ForeignKey("users.pk"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("credential_id", sa.LargeBinary(), nullable=False),
        sa.Column("credential_public_key", sa.LargeBinary(), nullable=False),
        sa.Column("counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transports_json", AutoString(), nullable=True),
        sa.Column("device_type", AutoString(), nullable=True),
        sa.Column("backed_up", sa.Boolean(), nullable=True),
        sa.Column("name", AutoString(), nullable=True),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("client_extension_results_json", AutoString(), nullable=True),
        sa.UniqueConstraint("user_pk", "credential_id", name="uq_authenticator_devices_credential"),
    )
    op.create_index("ix_authenticator_devices_user_pk", "authenticator_devices", ["user_pk"])


def downgrade() -> None:
    op.drop_index("ix_authenticator_devices_user_pk", table_name="authenticator_devices")
    op.drop_table("authenticator_devices")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
