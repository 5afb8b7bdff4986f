"""Create telephony_integrations, telephony_bindings and telephony_calls tables.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "telephony_integrations" not in existing_tables:
        op.create_table(
            "telephony_integrations",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("carrier", sa.String(20), nullable=False, index=True),
            sa.Column("name", sa.String(200), nullable=True),
            sa.Column("encrypted_credentials", sa.Text, nullable=False),
            sa.Column("credential_fingerprint", sa.String(64), nullable=False, index=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="active"),
            sa.Column("provider_resources", sa.JSON, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )

    if "telephony_bindings" not in existing_tables:
        op.create_table(
            "telephony_bindings",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "integration_id",
                sa.String(36),
                sa.ForeignKey("telephony_integrations.id", ondelete="CASCADE"),
                nullable=False,
                index=True,
            ),
            sa.Column("carrier", sa.String(20), nullable=False),
            sa.Column("provider_number_id", sa.String(100), nullable=False),
            sa.Column("e164", sa.String(20), nullable=False, index=True),
            sa.Column("agent_id", sa.String(100), nullable=True),
            sa.Column("agent_config", sa.JSON, nullable=True),
            sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        # At most one enabled binding per DID
        op.create_index(
            "uq_telephony_bindings_enabled_e164",
            "telephony_bindings",
            ["e164"],
            unique=True,
            postgresql_where=sa.text("enabled"),
            sqlite_where=sa.text("enabled = 1"),
        )

    if "telephony_calls" not in existing_tables:
        op.create_table(
            "telephony_calls",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("room_name", sa.String(255), nullable=False, unique=True, index=True),
            sa.Column("direction", sa.String(20), nullable=False, server_default="inbound"),
            sa.Column("from_number", sa.String(64), nullable=True),
            sa.Column("to_number", sa.String(64), nullable=True),
            sa.Column("status", sa.String(30), nullable=False, server_default="created"),
            sa.Column("agent_dispatched", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("sip_participant", sa.JSON, nullable=True),
            sa.Column("last_event", sa.JSON, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )


def downgrade() -> None:
    op.drop_table("telephony_calls")
    op.drop_index("uq_telephony_bindings_enabled_e164", table_name="telephony_bindings")
    op.drop_table("telephony_bindings")
    op.drop_table("telephony_integrations")
