import uuid

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    """UUID on PostgreSQL, CHAR(36) elsewhere (SQLite in tests)."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = uuid.UUID(value)
            except ValueError:
                return value
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
AMOUNT_TYPE = Numeric(12, 2, asdecimal=False)


class InvoiceHistory(Base):
    __tablename__ = "invoice_history"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), nullable=False)

    vendor_name = Column(String(255), nullable=False, default="")
    category = Column(String(32), nullable=False, default="Övrigt")
    monthly_cost = Column(AMOUNT_TYPE)
    total_amount = Column(AMOUNT_TYPE)
    currency = Column(String(8), nullable=False, default="SEK")
    due_date = Column(Date)
    invoice_date = Column(Date)
    customer_number = Column(String(128), nullable=False, default="")
    invoice_number = Column(String(128), nullable=False, default="")
    organization_number = Column(String(64), nullable=False, default="")
    ocr_reference = Column(String(128), nullable=False, default="")
    vat_amount = Column(AMOUNT_TYPE)
    payment_method = Column(String(32), nullable=False, default="Okänt")
    confidence = Column(Float, nullable=False, default=0.0)

    billing_type = Column(String(32), nullable=False, default="Oklart")
    status = Column(String(32), nullable=False, default="Okänt")
    source_type = Column(String(16), nullable=False, default="text")
    file_name = Column(String(180), nullable=False, default="")
    file_preview = Column(JSON_TYPE)
    analysis_mode = Column(String(16), nullable=False, default="rules")

    scanned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("idx_invoice_history_owner_created", "owner_id", "created_at"),)
