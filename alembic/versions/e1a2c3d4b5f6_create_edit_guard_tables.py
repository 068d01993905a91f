"""create edit session and editable resource tables

Revision ID: e1a2c3d4b5f6
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "e1a2c3d4b5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _resource_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column(
            "created_by",
            sa.String(length=255),
            nullable=False,
            server_default=sa.text("'system@local'"),
        ),
        sa.Column(
            "last_changed_by",
            sa.String(length=255),
            nullable=False,
            server_default=sa.text("'system@local'"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "edit_session",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("last_heartbeat", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id",
            "resource_type",
            "resource_id",
            name="uq_edit_session_user_resource",
        ),
    )
    op.create_index("ix_edit_session_user_id", "edit_session", ["user_id"])
    op.create_index("ix_edit_session_resource_type", "edit_session", ["resource_type"])
    op.create_index("ix_edit_session_resource_id", "edit_session", ["resource_id"])
    op.create_index("ix_edit_session_last_heartbeat", "edit_session", ["last_heartbeat"])

    op.create_table(
        "purchase_order",
        *_resource_columns(),
        sa.Column("po_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("supplier_name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("expected_delivery_date", sa.Date(), nullable=True),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )

    op.create_table(
        "non_conformity",
        *_resource_columns(),
        sa.Column("nc_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("discovered_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("disposition", sa.String(length=32), nullable=True),
    )

    op.create_table(
        "corrective_action",
        *_resource_columns(),
        sa.Column("capa_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("root_cause", sa.Text(), nullable=True),
        sa.Column("corrective_action", sa.Text(), nullable=True),
        sa.Column("preventive_action", sa.Text(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("non_conformity_id", sa.String(length=36), nullable=True),
    )
    op.create_index(
        "ix_corrective_action_non_conformity_id",
        "corrective_action",
        ["non_conformity_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_corrective_action_non_conformity_id", table_name="corrective_action")
    op.drop_table("corrective_action")
    op.drop_table("non_conformity")
    op.drop_table("purchase_order")
    op.drop_index("ix_edit_session_last_heartbeat", table_name="edit_session")
    op.drop_index("ix_edit_session_resource_id", table_name="edit_session")
    op.drop_index("ix_edit_session_resource_type", table_name="edit_session")
    op.drop_index("ix_edit_session_user_id", table_name="edit_session")
    op.drop_table("edit_session")
