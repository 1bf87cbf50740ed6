"""invoice history

Revision ID: 20261019_000001
Revises: 
Create Date: 2026-10-19 09:30:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_type = sa.JSON().with_variant(postgresql.JSONB, "postgresql")
    uuid_type = sa.CHAR(36).with_variant(postgresql.UUID(as_uuid=True), "postgresql")
    amount_type = sa.Numeric(12, 2)

    op.create_table(
        "invoice_history",
        sa.Column("id", uuid_type, primary_key=True, nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("vendor_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("category", sa.String(length=32), nullable=False, server_default="Övrigt"),
        sa.Column("monthly_cost", amount_type),
        sa.Column("total_amount", amount_type),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="SEK"),
        sa.Column("due_date", sa.Date()),
        sa.Column("invoice_date", sa.Date()),
        sa.Column("customer_number", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("invoice_number", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("organization_number", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("ocr_reference", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("vat_amount", amount_type),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="Okänt"),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0"),
        sa.Column("billing_type", sa.String(length=32), nullable=False, server_default="Oklart"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Okänt"),
        sa.Column("source_type", sa.String(length=16), nullable=False, server_default="text"),
        sa.Column("file_name", sa.String(length=180), nullable=False, server_default=""),
        sa.Column("file_preview", json_type),
        sa.Column("analysis_mode", sa.String(length=16), nullable=False, server_default="rules"),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_invoice_history_owner_created", "invoice_history", ["owner_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_invoice_history_owner_created", table_name="invoice_history")
    op.drop_table("invoice_history")
