"""services table

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "services",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("service_type", sa.String(length=60), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=False),
        sa.Column("username", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "include_in_total", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "admin_override", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.CheckConstraint("price >= 0", name="ck_services_price_non_negative"),
    )
    op.create_index("ix_services_title", "services", ["title"])
    op.create_index("ix_services_user_created", "services", ["user_id", "created_at"])
    op.create_index(
        "ix_services_include_created", "services", ["include_in_total", "created_at"]
    )


def downgrade():
    op.drop_index("ix_services_include_created", table_name="services")
    op.drop_index("ix_services_user_created", table_name="services")
    op.drop_index("ix_services_title", table_name="services")
    op.drop_table("services")
