"""create templates table

Revision ID: 0001_create_templates_table
Revises:
Create Date: 2025-10-01
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_create_templates_table"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_path", sa.String(length=1024), nullable=False),
        sa.Column("name_x", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name_y", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qr_x", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qr_y", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qr_size", sa.Integer(), nullable=False, server_default="200"),
        sa.Column(
            "font_family", sa.String(length=120), nullable=False, server_default="Inter"
        ),
        sa.Column("font_size", sa.Integer(), nullable=False, server_default="48"),
        sa.Column(
            "font_weight", sa.String(length=20), nullable=False, server_default="600"
        ),
        sa.Column(
            "font_color", sa.String(length=20), nullable=False, server_default="#000000"
        ),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table("templates")
