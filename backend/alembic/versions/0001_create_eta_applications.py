"""Create eta_applications: one row per paid application.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "eta_applications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("reference_number", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), server_default="submitted"),
        # Payment
        sa.Column("payment_intent_id", sa.String(255), nullable=False),
        sa.Column("payment_amount", sa.Integer(), nullable=False),
        sa.Column("payment_currency", sa.String(3), server_default="gbp"),
        # Passport
        sa.Column("passport_country", sa.String(100)),
        sa.Column("passport_number", sa.String(20)),
        sa.Column("issue_date", sa.Date()),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("issuing_authority", sa.String(255)),
        # Personal
        sa.Column("first_name", sa.String(255)),
        sa.Column("last_name", sa.String(255)),
        sa.Column("date_of_birth", sa.Date()),
        sa.Column("gender", sa.String(10)),
        sa.Column("nationality", sa.String(100)),
        sa.Column("birth_country", sa.String(100)),
        # Contact
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20)),
        # Photos
        sa.Column("selfie_photo_url", sa.Text()),
        sa.Column("passport_photo_url", sa.Text()),
        # Background
        sa.Column("criminal_convictions", sa.String(3)),
        sa.Column("immigration_breaches", sa.String(3)),
        sa.Column("previous_refusals", sa.String(3)),
        sa.Column("terrorism_involvement", sa.String(3)),
        # Address
        sa.Column("address_line_1", sa.String(255)),
        sa.Column("address_line_2", sa.String(255)),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(100)),
        sa.Column("postcode", sa.String(20)),
        sa.Column("country", sa.String(100)),
        # Emergency contact
        sa.Column("emergency_name", sa.String(255)),
        sa.Column("emergency_relationship", sa.String(100)),
        sa.Column("emergency_phone", sa.String(20)),
        sa.Column("submitted_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # One application per Stripe charge; also what resolves racing submits
    op.create_index("ix_eta_applications_payment_intent_id", "eta_applications", ["payment_intent_id"], unique=True)
    op.create_index("ix_eta_applications_reference_number", "eta_applications", ["reference_number"], unique=True)
    op.create_index("ix_eta_applications_email", "eta_applications", ["email"])
    op.create_index("ix_eta_applications_status", "eta_applications", ["status"])


def downgrade() -> None:
    op.drop_index("ix_eta_applications_status", table_name="eta_applications")
    op.drop_index("ix_eta_applications_email", table_name="eta_applications")
    op.drop_index("ix_eta_applications_reference_number", table_name="eta_applications")
    op.drop_index("ix_eta_applications_payment_intent_id", table_name="eta_applications")
    op.drop_table("eta_applications")
