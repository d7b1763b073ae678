"""create certificates table

Revision ID: 0002_create_certificates_table
Revises: 0001_create_templates_table
Create Date: 2025-10-01
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_create_certificates_table"
down_revision = "0001_create_templates_table"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("certificate_number", sa.String(length=64), nullable=False),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("qr_data", sa.String(length=1024), nullable=True),
        sa.Column("image_path", sa.String(length=1024), nullable=True),
        sa.Column("issued_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column(
            "email_status",
            sa.String(length=16),
            nullable=False,
            server_default="NOT_SENT",
        ),
        sa.Column("email_error", sa.Text(), nullable=True),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "certificate_number", name="uq_certificates_certificate_number"
        ),
    )
    op.create_index("ix_certificates_issued_at", "certificates", ["issued_at"])


def downgrade():
    op.drop_index("ix_certificates_issued_at", table_name="certificates")
    op.drop_table("certificates")
