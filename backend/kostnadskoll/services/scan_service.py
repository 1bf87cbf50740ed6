"""Invoice scan orchestration: input checks, AI-or-rules extraction, normalization, drafts."""

from __future__ import annotations

import logging
from typing import Any, Optional

from kostnadskoll.core.config import get_settings
from kostnadskoll.schemas.invoice import (
    DEFAULT_VENDOR,
    AnalysisMode,
    ExtractedInvoice,
    InvoiceFile,
    ScanResult,
)
from kostnadskoll.services.ai.invoice_extract.service import extract_invoice_via_ai
from kostnadskoll.services.email_templates import TemplateStrategy, select_templates
from kostnadskoll.services.errors import MissingInputError, UpstreamAIError
from kostnadskoll.services.extraction.normalizer import normalize_extracted

logger = logging.getLogger(__name__)

MAX_FILE_NAME_LENGTH = 180
DEFAULT_FILE_NAME = "invoice-file"
DEFAULT_FILE_TYPE = "application/octet-stream"

AI_DISABLED_WARNING = (
    "AI-analys är inte aktiverad eftersom OPENAI_API_KEY saknas. "
    "Regelbaserad analys används tills nyckeln är konfigurerad."
)
AI_FAILED_WARNING = "AI-analysen kunde inte genomföras just nu. Regelbaserad analys användes som reserv."
AI_PROVIDER_UNSUPPORTED_WARNING = (
    "AI-analys är inte aktiverad eftersom AI_PROVIDER inte stöds. "
    "Regelbaserad analys används tills en giltig leverantör är konfigurerad."
)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_file_payload(file: Any) -> Optional[InvoiceFile]:
    """Return a cleaned ``InvoiceFile`` or ``None`` when there is no usable ``data:`` payload."""
    if isinstance(file, InvoiceFile):
        name, file_type, data_url = file.name, file.type, file.data_url
    elif isinstance(file, dict):
        name = file.get("name")
        file_type = file.get("type")
        data_url = file.get("dataUrl", file.get("data_url"))
    else:
        return None

    if not isinstance(data_url, str) or not data_url.startswith("data:"):
        return None

    return InvoiceFile(
        name=(_text(name) or DEFAULT_FILE_NAME)[:MAX_FILE_NAME_LENGTH],
        type=_text(file_type) or DEFAULT_FILE_TYPE,
        data_url=data_url,
    )


def build_missing_fields(extracted: ExtractedInvoice) -> list[str]:
    missing: list[str] = []
    if not extracted.vendor_name or extracted.vendor_name == DEFAULT_VENDOR:
        missing.append("Leverantör")
    if extracted.total_amount is None:
        missing.append("Totalbelopp")
    if extracted.due_date is None:
        missing.append("Förfallodatum")
    if not extracted.invoice_number:
        missing.append("Fakturanummer")
    if not extracted.customer_number and not extracted.ocr_reference:
        missing.append("Kundnummer eller OCR-nummer")
    return missing


async def scan(
    text: Optional[str],
    file: Any = None,
    *,
    strategy: TemplateStrategy | None = None,
) -> ScanResult:
    """Scan one invoice.

    AI failures never fail the scan: they downgrade it to ``rules`` mode with
    a warning. Only missing input raises (``MissingInputError``).
    """
    safe_text = text if isinstance(text, str) else ""
    safe_file = normalize_file_payload(file)

    if not safe_text.strip() and safe_file is None:
        raise MissingInputError()

    settings = get_settings()
    raw_payload = None
    mode = AnalysisMode.RULES
    warning = ""

    if not settings.ai_enabled:
        if settings.openai_api_key.strip():
            warning = AI_PROVIDER_UNSUPPORTED_WARNING
        else:
            warning = AI_DISABLED_WARNING
    else:
        try:
            ai_result = await extract_invoice_via_ai(safe_text, safe_file)
            raw_payload = ai_result.payload
            mode = AnalysisMode.AI
        except UpstreamAIError:
            logger.warning("AI extraction failed, using rule-based extraction", exc_info=True)
            warning = AI_FAILED_WARNING

    normalized = normalize_extracted(raw_payload, safe_text)
    extracted = normalized.extracted

    return ScanResult(
        extracted=extracted,
        field_meta=normalized.field_meta,
        actions=select_templates(extracted, strategy),
        missing_fields=build_missing_fields(extracted),
        analysis_mode=mode,
        warning=warning,
    )
