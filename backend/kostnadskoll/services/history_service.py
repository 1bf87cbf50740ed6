"""Invoice history store.

Every read and write is scoped to the owner. A record that belongs to another
user is reported exactly like a missing one (``OwnershipError`` is a
``NotFoundError`` with the same message) and is never touched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from kostnadskoll.core.config import get_settings
from kostnadskoll.models.invoice import InvoiceHistory
from kostnadskoll.schemas.invoice import (
    AnalysisMode,
    BillingType,
    ExtractedInvoice,
    FilePreview,
    HistoryEntryOut,
    InvoiceFile,
    InvoiceStatus,
    SourceType,
)
from kostnadskoll.services.errors import NotFoundError, OwnershipError, ValidationError
from kostnadskoll.services.extraction.vocabulary import SERVICE_LIKE_CATEGORY, normalize_billing_type
from kostnadskoll.services.text_tools import fold, to_number

logger = logging.getLogger(__name__)

MAX_PREVIEW_DATA_URL_LENGTH = 720_000
MAX_TEXT_PREVIEW_LENGTH = 12_000
DELETE_CHUNK_SIZE = 400
HISTORY_LIMIT_MIN = 1
HISTORY_LIMIT_MAX = 200
DUE_SOON_DAYS = 7

PREVIEW_TOO_LARGE = "Filen var för stor för att sparas i historikförhandsvisning."
PREVIEW_UNSUPPORTED = "Ingen visuell förhandsvisning kunde sparas för filtypen."
MISSING_ID = "Historikpostens id saknas i förfrågan."
INVALID_ID = "Historikpostens id har ett ogiltigt format."
NO_VALID_IDS = "Inga giltiga historik-id skickades in för radering."

_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp")
_PREVIEW_KINDS = {"image", "pdf", "text"}


# ─── Derived fields ───────────────────────────────────


def _now_utc() -> datetime:
    settings = get_settings()
    if (settings.database_url or "").startswith("sqlite"):
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now(timezone.utc)


def infer_status(due_date: Optional[date], *, today: Optional[date] = None) -> InvoiceStatus:
    if due_date is None:
        return InvoiceStatus.UNKNOWN
    today = today or date.today()
    days_left = (due_date - today).days
    if days_left < 0:
        return InvoiceStatus.OVERDUE
    if days_left <= DUE_SOON_DAYS:
        return InvoiceStatus.DUE_SOON
    return InvoiceStatus.ACTIVE


def infer_billing_type(
    value: Any = None,
    *,
    category: Any = None,
    monthly_cost: Any = None,
    total_amount: Any = None,
) -> BillingType:
    """Explicit value when recognised, otherwise inferred from category and amounts."""
    explicit = normalize_billing_type(value)
    if explicit is not None:
        return explicit

    if SERVICE_LIKE_CATEGORY.search(fold(category)):
        return BillingType.ONE_TIME
    monthly = to_number(monthly_cost)
    if monthly is not None and monthly > 0:
        return BillingType.SUBSCRIPTION
    total = to_number(total_amount)
    if total is not None and total > 0:
        return BillingType.ONE_TIME
    return BillingType.UNCLEAR


def infer_preview_kind(file_type: str, file_name: str) -> str:
    file_type = (file_type or "").lower()
    if file_type.startswith("image/"):
        return "image"
    if file_type == "application/pdf":
        return "pdf"

    lower_name = (file_name or "").lower()
    if lower_name.endswith(".pdf"):
        return "pdf"
    if lower_name.endswith(_IMAGE_SUFFIXES):
        return "image"
    return "unavailable"


def build_file_preview(
    *,
    source_type: SourceType,
    file_name: str = "",
    file: Optional[InvoiceFile] = None,
    source_text: str = "",
) -> Optional[FilePreview]:
    """Bounded preview kept with the history record. ``None`` when there is nothing to show."""
    name = (file_name or (file.name if file else "") or "").strip()
    file_type = (file.type if file else "").strip().lower()
    data_url = (file.data_url if file else "").strip()

    if source_type == SourceType.FILE:
        kind = infer_preview_kind(file_type, name)
        if kind in ("image", "pdf") and data_url.startswith("data:"):
            if len(data_url) <= MAX_PREVIEW_DATA_URL_LENGTH:
                return FilePreview(preview_kind=kind, preview_src=data_url, file_name=name, file_type=file_type)
            return FilePreview(
                preview_kind="unavailable",
                file_name=name,
                file_type=file_type,
                unavailable_reason=PREVIEW_TOO_LARGE,
            )
        return FilePreview(
            preview_kind="unavailable",
            file_name=name,
            file_type=file_type,
            unavailable_reason=PREVIEW_UNSUPPORTED,
        )

    text_preview = (source_text or "").strip()[:MAX_TEXT_PREVIEW_LENGTH]
    if not text_preview:
        return None
    return FilePreview(
        preview_kind="text",
        text_preview=text_preview,
        file_name=name,
        file_type=file_type or "text/plain",
    )


def sanitize_stored_preview(raw: Any, file_name: str = "") -> Optional[FilePreview]:
    if not isinstance(raw, dict):
        return None

    kind = str(raw.get("preview_kind") or "").strip().lower()
    src = raw.get("preview_src")
    text_preview = raw.get("text_preview")
    return FilePreview(
        preview_kind=kind if kind in _PREVIEW_KINDS else "unavailable",
        preview_src=src
        if isinstance(src, str) and src.startswith("data:") and len(src) <= MAX_PREVIEW_DATA_URL_LENGTH
        else "",
        text_preview=text_preview[:MAX_TEXT_PREVIEW_LENGTH] if isinstance(text_preview, str) else "",
        file_name=str(raw.get("file_name") or file_name or "").strip(),
        file_type=str(raw.get("file_type") or "").strip(),
        unavailable_reason=str(raw.get("unavailable_reason") or "").strip(),
    )


def clamp_limit(limit: Any, default: Optional[int] = None) -> int:
    fallback = default if default is not None else get_settings().history_default_limit
    number = to_number(limit)
    if number is None:
        number = fallback
    return int(min(HISTORY_LIMIT_MAX, max(HISTORY_LIMIT_MIN, int(number))))


def to_history_out(row: InvoiceHistory, *, today: Optional[date] = None) -> HistoryEntryOut:
    """Serialize a row. Status is re-derived so it follows the calendar, not the save date."""
    return HistoryEntryOut(
        id=str(row.id),
        vendor_name=row.vendor_name,
        category=row.category,
        monthly_cost=row.monthly_cost,
        total_amount=row.total_amount,
        currency=row.currency,
        due_date=row.due_date,
        invoice_date=row.invoice_date,
        customer_number=row.customer_number or "",
        invoice_number=row.invoice_number or "",
        organization_number=row.organization_number or "",
        ocr_reference=row.ocr_reference or "",
        vat_amount=row.vat_amount,
        payment_method=row.payment_method,
        confidence=row.confidence,
        billing_type=infer_billing_type(
            row.billing_type,
            category=row.category,
            monthly_cost=row.monthly_cost,
            total_amount=row.total_amount,
        ),
        status=infer_status(row.due_date, today=today),
        source_type=row.source_type if row.source_type in (SourceType.FILE, SourceType.TEXT) else SourceType.TEXT,
        file_name=row.file_name or "",
        file_preview=sanitize_stored_preview(row.file_preview, row.file_name or ""),
        analysis_mode=row.analysis_mode if row.analysis_mode in (AnalysisMode.AI, AnalysisMode.RULES) else AnalysisMode.RULES,
        scanned_at=row.scanned_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _apply_extracted(row: InvoiceHistory, extracted: ExtractedInvoice, billing_type: Any) -> None:
    row.vendor_name = extracted.vendor_name
    row.category = str(extracted.category)
    row.monthly_cost = extracted.monthly_cost
    row.total_amount = extracted.total_amount
    row.currency = extracted.currency
    row.due_date = extracted.due_date
    row.invoice_date = extracted.invoice_date
    row.customer_number = extracted.customer_number
    row.invoice_number = extracted.invoice_number
    row.organization_number = extracted.organization_number
    row.ocr_reference = extracted.ocr_reference
    row.vat_amount = extracted.vat_amount
    row.payment_method = str(extracted.payment_method)
    row.confidence = extracted.confidence
    row.billing_type = str(
        infer_billing_type(
            billing_type,
            category=extracted.category,
            monthly_cost=extracted.monthly_cost,
            total_amount=extracted.total_amount,
        )
    )
    row.status = str(infer_status(extracted.due_date))


def _parse_id(entry_id: Any) -> Optional[uuid.UUID]:
    if isinstance(entry_id, uuid.UUID):
        return entry_id
    try:
        return uuid.UUID(str(entry_id).strip())
    except ValueError:
        return None


# ─── Store operations ─────────────────────────────────


def save_entry(
    db: Session,
    owner_id: str,
    extracted: ExtractedInvoice,
    *,
    analysis_mode: AnalysisMode = AnalysisMode.RULES,
    source_type: SourceType = SourceType.TEXT,
    file: Optional[InvoiceFile] = None,
    source_text: str = "",
    billing_type: Any = None,
) -> InvoiceHistory:
    if not owner_id:
        raise ValidationError("Kunde inte identifiera användaren för historikposten.")

    file_name = file.name if file else ""
    row = InvoiceHistory(
        owner_id=owner_id,
        source_type=str(source_type),
        file_name=file_name,
        analysis_mode=str(analysis_mode),
        scanned_at=_now_utc(),
    )
    _apply_extracted(row, extracted, billing_type)

    preview = build_file_preview(
        source_type=source_type,
        file_name=file_name,
        file=file,
        source_text=source_text,
    )
    row.file_preview = preview.model_dump() if preview else None

    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Saved history entry %s (mode=%s, source=%s)", row.id, row.analysis_mode, row.source_type)
    return row


def list_by_owner(
    db: Session,
    owner_id: str,
    limit: Any = None,
    *,
    today: Optional[date] = None,
) -> list[HistoryEntryOut]:
    safe_limit = clamp_limit(limit)
    rows = (
        db.execute(
            select(InvoiceHistory)
            .where(InvoiceHistory.owner_id == owner_id)
            .order_by(desc(InvoiceHistory.created_at), desc(InvoiceHistory.scanned_at))
            .limit(safe_limit)
        )
        .scalars()
        .all()
    )
    return [to_history_out(row, today=today) for row in rows]


def get_entry(db: Session, owner_id: str, entry_id: Any) -> InvoiceHistory:
    if entry_id is None or not str(entry_id).strip():
        raise ValidationError(MISSING_ID)

    parsed = _parse_id(entry_id)
    if parsed is None:
        raise ValidationError(INVALID_ID)
    row = db.get(InvoiceHistory, parsed)
    if row is None:
        raise NotFoundError()
    if row.owner_id != owner_id:
        raise OwnershipError()
    return row


def update_entry(
    db: Session,
    owner_id: str,
    entry_id: Any,
    extracted: ExtractedInvoice,
    *,
    billing_type: Any = None,
) -> HistoryEntryOut:
    row = get_entry(db, owner_id, entry_id)
    _apply_extracted(row, extracted, billing_type)
    row.updated_at = _now_utc()
    db.commit()
    db.refresh(row)
    return to_history_out(row)


def delete_entry(db: Session, owner_id: str, entry_id: Any) -> int:
    row = get_entry(db, owner_id, entry_id)
    db.delete(row)
    db.commit()
    return 1


def _chunks(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def delete_many(db: Session, owner_id: str, entry_ids: Iterable[Any]) -> int:
    """Delete the caller's entries among *entry_ids*; foreign and unknown ids are skipped."""
    cleaned = list(dict.fromkeys(str(i).strip() for i in entry_ids or [] if i is not None and str(i).strip()))
    if not cleaned:
        raise ValidationError(NO_VALID_IDS)

    parsed = [p for p in (_parse_id(i) for i in cleaned) if p is not None]
    deleted = 0
    for chunk in _chunks(parsed, DELETE_CHUNK_SIZE):
        result = db.execute(
            delete(InvoiceHistory)
            .where(InvoiceHistory.id.in_(chunk), InvoiceHistory.owner_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        deleted += result.rowcount or 0
    db.commit()
    return deleted


def delete_all_by_owner(db: Session, owner_id: str) -> int:
    result = db.execute(
        delete(InvoiceHistory)
        .where(InvoiceHistory.owner_id == owner_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    deleted = result.rowcount or 0
    logger.info("Purged %d history entries for owner", deleted)
    return deleted
