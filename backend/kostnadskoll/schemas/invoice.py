from __future__ import annotations

import logging
from datetime import date, datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from kostnadskoll.services.text_tools import clamp, normalize_date, to_number

logger = logging.getLogger(__name__)

DEFAULT_VENDOR = "Okänd leverantör"
DEFAULT_CURRENCY = "SEK"
NO_SOURCE_SENTINEL = "Ingen tydlig källa hittades i texten."


class Category(StrEnum):
    MOBILE = "Mobil"
    INTERNET = "Internet"
    ELECTRICITY = "El"
    INSURANCE = "Försäkring"
    STREAMING = "Streaming"
    BANKING = "Bank"
    SERVICE = "Tjänst"
    OTHER = "Övrigt"


class PaymentMethod(StrEnum):
    AUTOGIRO = "Autogiro"
    E_INVOICE = "E-faktura"
    BANKGIRO = "Bankgiro"
    PLUSGIRO = "Plusgiro"
    CARD = "Kort"
    SWISH = "Swish"
    UNKNOWN = "Okänt"


class BillingType(StrEnum):
    SUBSCRIPTION = "Abonnemang"
    ONE_TIME = "Engång"
    UNCLEAR = "Oklart"


class InvoiceStatus(StrEnum):
    ACTIVE = "Aktiv"
    DUE_SOON = "Förfaller snart"
    OVERDUE = "Förfallen"
    UNKNOWN = "Okänt"


class AnalysisMode(StrEnum):
    AI = "ai"
    RULES = "rules"


class SourceType(StrEnum):
    TEXT = "text"
    FILE = "file"


# Order matters: FieldMeta is emitted in this order.
FIELD_KEYS: tuple[str, ...] = (
    "vendor_name",
    "category",
    "monthly_cost",
    "total_amount",
    "currency",
    "due_date",
    "invoice_date",
    "customer_number",
    "invoice_number",
    "organization_number",
    "ocr_reference",
    "vat_amount",
    "payment_method",
)

# camelCase spellings the AI model (and older clients) use for the same fields.
CAMEL_FIELD_ALIASES: dict[str, str] = {
    "vendorName": "vendor_name",
    "monthlyCost": "monthly_cost",
    "totalAmount": "total_amount",
    "dueDate": "due_date",
    "invoiceDate": "invoice_date",
    "customerNumber": "customer_number",
    "invoiceNumber": "invoice_number",
    "organizationNumber": "organization_number",
    "ocrNumber": "ocr_reference",
    "ocr_number": "ocr_reference",
    "ocrReference": "ocr_reference",
    "vatAmount": "vat_amount",
    "paymentMethod": "payment_method",
}


def canonical_field_key(key: Any) -> str | None:
    text = str(key or "").strip()
    if text in FIELD_KEYS:
        return text
    return CAMEL_FIELD_ALIASES.get(text)


# ---------------------------------------------------------------------------
# Raw (untyped) AI output
# ---------------------------------------------------------------------------


def _loose_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    return None


class RawExtraction(BaseModel):
    """Whatever the AI returned, coerced field by field. Unusable values become ``None``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    vendor_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("vendor_name", "vendorName"))
    category: Optional[str] = None
    monthly_cost: Optional[float] = Field(default=None, validation_alias=AliasChoices("monthly_cost", "monthlyCost"))
    total_amount: Optional[float] = Field(default=None, validation_alias=AliasChoices("total_amount", "totalAmount"))
    currency: Optional[str] = None
    due_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("due_date", "dueDate"))
    invoice_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("invoice_date", "invoiceDate"))
    customer_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_number", "customerNumber")
    )
    invoice_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("invoice_number", "invoiceNumber")
    )
    organization_number: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("organization_number", "organizationNumber")
    )
    ocr_reference: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ocr_reference", "ocrReference", "ocr_number", "ocrNumber"),
    )
    vat_amount: Optional[float] = Field(default=None, validation_alias=AliasChoices("vat_amount", "vatAmount"))
    payment_method: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("payment_method", "paymentMethod")
    )
    confidence: Optional[float] = None

    @field_validator(
        "vendor_name",
        "category",
        "currency",
        "due_date",
        "invoice_date",
        "customer_number",
        "invoice_number",
        "organization_number",
        "ocr_reference",
        "payment_method",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value):
        return _loose_text(value)

    @field_validator("monthly_cost", "total_amount", "vat_amount", "confidence", mode="before")
    @classmethod
    def _coerce_number(cls, value):
        return to_number(value)


class RawFieldEvidence(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    confidence: Optional[float] = None
    source_text: Optional[str] = Field(default=None, validation_alias=AliasChoices("source_text", "sourceText"))

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value):
        return to_number(value)

    @field_validator("source_text", mode="before")
    @classmethod
    def _coerce_source(cls, value):
        return value if isinstance(value, str) else None


class RawInvoicePayload(BaseModel):
    """``{extracted, field_meta}`` as returned by the AI, or empty when there was no AI run."""

    extracted: RawExtraction = Field(default_factory=RawExtraction)
    field_meta: dict[str, RawFieldEvidence] = Field(default_factory=dict)

    @classmethod
    def from_untyped(cls, data: Any) -> "RawInvoicePayload":
        """Accept wrapped (``{"extracted": ..., "fieldMeta": ...}``) or flat field objects."""
        if isinstance(data, RawInvoicePayload):
            return data
        if not isinstance(data, dict):
            return cls()

        extracted_src = data.get("extracted")
        if not isinstance(extracted_src, dict):
            extracted_src = data
        meta_src = data.get("field_meta", data.get("fieldMeta"))
        if not isinstance(meta_src, dict):
            meta_src = {}

        try:
            extracted = RawExtraction.model_validate(extracted_src)
        except PydanticValidationError:
            logger.warning("Discarding unparseable raw extraction", exc_info=True)
            extracted = RawExtraction()

        field_meta: dict[str, RawFieldEvidence] = {}
        for key, value in meta_src.items():
            canonical = canonical_field_key(key)
            if canonical is None or not isinstance(value, dict):
                continue
            try:
                field_meta[canonical] = RawFieldEvidence.model_validate(value)
            except PydanticValidationError:
                continue

        return cls(extracted=extracted, field_meta=field_meta)


# ---------------------------------------------------------------------------
# Canonical invoice
# ---------------------------------------------------------------------------


class ExtractedInvoice(BaseModel):
    vendor_name: str = DEFAULT_VENDOR
    category: Category = Category.OTHER
    monthly_cost: Optional[float] = None
    total_amount: Optional[float] = None
    currency: str = DEFAULT_CURRENCY
    due_date: Optional[date] = None
    invoice_date: Optional[date] = None
    customer_number: str = ""
    invoice_number: str = ""
    organization_number: str = ""
    ocr_reference: str = Field(default="", validation_alias=AliasChoices("ocr_reference", "ocr_number"))
    vat_amount: Optional[float] = None
    payment_method: PaymentMethod = PaymentMethod.UNKNOWN
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        return clamp(to_number(value), 0.0, 1.0)

    @field_validator("category", mode="before")
    @classmethod
    def _canonical_category(cls, value):
        from kostnadskoll.services.extraction.vocabulary import normalize_category

        return normalize_category(value)

    @field_validator("payment_method", mode="before")
    @classmethod
    def _canonical_payment_method(cls, value):
        from kostnadskoll.services.extraction.vocabulary import normalize_payment_method

        return normalize_payment_method(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        if not isinstance(value, str) or not value.strip():
            return DEFAULT_CURRENCY
        return value.strip().upper()

    @field_validator("due_date", "invoice_date", mode="before")
    @classmethod
    def _parse_dates(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return normalize_date(value) or value

    @field_validator("monthly_cost", "total_amount", "vat_amount", mode="before")
    @classmethod
    def _parse_amounts(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        parsed = to_number(value)
        return value if parsed is None else parsed

    @field_validator("vendor_name", mode="before")
    @classmethod
    def _default_vendor(cls, value):
        if not isinstance(value, str) or not value.strip():
            return DEFAULT_VENDOR
        return value.strip()


class FieldMeta(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0)
    source_text: str = NO_SOURCE_SENTINEL


class EmailTemplate(BaseModel):
    type: str = "cancel_email"
    template_id: str
    template_label: str
    intent: str  # "cancel" | "negotiate" | "specification"
    subject: str
    body: str


class InvoiceFile(BaseModel):
    name: str = "invoice-file"
    type: str = "application/octet-stream"
    data_url: str = Field(default="", validation_alias=AliasChoices("data_url", "dataUrl"))

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_image(self) -> bool:
        return (self.type or "").lower().startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return (self.type or "").lower() == "application/pdf" or (self.name or "").lower().endswith(".pdf")


class ScanRequest(BaseModel):
    text: str = ""
    file: Optional[InvoiceFile] = None


class ScanResult(BaseModel):
    extracted: ExtractedInvoice
    field_meta: dict[str, FieldMeta]
    actions: list[EmailTemplate] = Field(default_factory=list)
    missing_fields: list[str] = Field(default_factory=list)
    analysis_mode: AnalysisMode
    warning: str = ""
    history_id: Optional[str] = None


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class FilePreview(BaseModel):
    preview_kind: str  # image | pdf | text | unavailable
    preview_src: str = ""
    text_preview: str = ""
    file_name: str = ""
    file_type: str = ""
    unavailable_reason: str = ""


class HistoryEntryOut(ExtractedInvoice):
    id: str
    billing_type: BillingType = BillingType.UNCLEAR
    status: InvoiceStatus = InvoiceStatus.UNKNOWN
    source_type: SourceType = SourceType.TEXT
    file_name: str = ""
    file_preview: Optional[FilePreview] = None
    analysis_mode: AnalysisMode = AnalysisMode.RULES
    scanned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HistoryListResponse(BaseModel):
    items: list[HistoryEntryOut]


class HistoryUpdateRequest(BaseModel):
    extracted: ExtractedInvoice
    billing_type: Optional[str] = None


class HistoryDeleteRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)
    all: bool = False


class DeleteResponse(BaseModel):
    deleted_count: int


class TemplateRankRequest(BaseModel):
    """Edited fields plus optional savings/market context used to rank drafts."""

    extracted: ExtractedInvoice
    entry: Optional[dict[str, Any]] = None
    market: Optional[dict[str, Any]] = None
    usage_answer: Optional[str] = None


class TemplateRankResponse(BaseModel):
    actions: list[EmailTemplate]
