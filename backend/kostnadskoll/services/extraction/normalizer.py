"""Merge an (optional) AI extraction with the rule-based one into a canonical invoice.

``normalize_extracted`` is pure and total: any input, including ``None`` and
garbage, yields a fully populated ``ExtractedInvoice`` plus one ``FieldMeta``
per field. Calling it twice with the same arguments gives identical output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any

from kostnadskoll.schemas.invoice import (
    DEFAULT_CURRENCY,
    FIELD_KEYS,
    NO_SOURCE_SENTINEL,
    Category,
    ExtractedInvoice,
    FieldMeta,
    PaymentMethod,
    RawFieldEvidence,
    RawInvoicePayload,
)
from kostnadskoll.services.extraction.rules import extract_with_rules
from kostnadskoll.services.extraction.vocabulary import (
    SOURCE_LINE_PATTERNS,
    has_monthly_signal,
    has_service_signal,
    normalize_category,
    normalize_payment_method,
)
from kostnadskoll.services.text_tools import (
    clamp,
    clean_string,
    format_number,
    is_empty_value,
    normalize_date,
    round2,
)

SAME_AMOUNT_TOLERANCE = 0.005
EMPTY_FIELD_CONFIDENCE = 0.25
CLASSIFIED_FIELDS = ("category", "payment_method")


@dataclass(frozen=True)
class NormalizedInvoice:
    extracted: ExtractedInvoice
    field_meta: dict[str, FieldMeta]


def normalize_extracted(raw: Any, source_text: str | None = "") -> NormalizedInvoice:
    text = source_text if isinstance(source_text, str) else ""
    payload = RawInvoicePayload.from_untyped(raw)
    ai = payload.extracted
    fallback = extract_with_rules(text)

    total_amount = _first_number(ai.total_amount, fallback.total_amount)
    monthly_evidence = payload.field_meta.get("monthly_cost")
    monthly_cost = resolve_monthly_cost(
        _first_number(ai.monthly_cost, fallback.monthly_cost),
        total_amount,
        monthly_snippet=monthly_evidence.source_text if monthly_evidence else None,
        full_text=text,
    )

    ai_payment = normalize_payment_method(ai.payment_method) if clean_string(ai.payment_method) else None
    payment_method = ai_payment if ai_payment not in (None, PaymentMethod.UNKNOWN) else fallback.payment_method

    extracted = ExtractedInvoice(
        vendor_name=clean_string(ai.vendor_name, fallback.vendor_name),
        category=resolve_category(ai.category, fallback.category, text),
        monthly_cost=monthly_cost,
        total_amount=total_amount,
        currency=clean_string(ai.currency, DEFAULT_CURRENCY).upper(),
        due_date=normalize_date(ai.due_date) or fallback.due_date,
        invoice_date=normalize_date(ai.invoice_date) or fallback.invoice_date,
        customer_number=clean_string(ai.customer_number, fallback.customer_number),
        invoice_number=clean_string(ai.invoice_number, fallback.invoice_number),
        organization_number=clean_string(ai.organization_number, fallback.organization_number),
        ocr_reference=clean_string(ai.ocr_reference, fallback.ocr_reference),
        vat_amount=_first_number(ai.vat_amount, fallback.vat_amount),
        payment_method=payment_method,
        confidence=clamp(_first_number(ai.confidence, fallback.confidence), 0.0, 1.0),
    )

    return NormalizedInvoice(
        extracted=extracted,
        field_meta=build_field_meta(extracted, payload.field_meta, text),
    )


def _first_number(primary: float | None, secondary: float | None) -> float | None:
    if primary is not None and math.isfinite(primary):
        return primary
    return secondary


def resolve_monthly_cost(
    candidate: float | None,
    total_amount: float | None,
    *,
    monthly_snippet: str | None,
    full_text: str,
) -> float | None:
    """Drop a monthly cost that merely repeats the invoice total without monthly-billing wording."""
    if candidate is None or total_amount is None:
        return candidate
    if abs(candidate - total_amount) >= SAME_AMOUNT_TOLERANCE:
        return candidate
    if has_monthly_signal(monthly_snippet) or has_monthly_signal(full_text):
        return candidate
    return None


def resolve_category(ai_value: Any, rule_category: Category, source_text: str) -> Category:
    ai_category = normalize_category(ai_value) if clean_string(ai_value) else None

    if (
        rule_category == Category.SERVICE
        and ai_category != Category.SERVICE
        and has_service_signal(source_text)
    ):
        return Category.SERVICE
    if ai_category is not None and ai_category != Category.OTHER:
        return ai_category
    if rule_category != Category.OTHER:
        return rule_category
    return Category.OTHER


# ---------------------------------------------------------------------------
# Provenance
# ---------------------------------------------------------------------------


def build_field_meta(
    extracted: ExtractedInvoice,
    raw_meta: dict[str, RawFieldEvidence],
    source_text: str,
) -> dict[str, FieldMeta]:
    lines = [line.strip() for line in source_text.splitlines() if line.strip()]
    meta: dict[str, FieldMeta] = {}

    for key in FIELD_KEYS:
        value = getattr(extracted, key)
        evidence = raw_meta.get(key)
        snippet = clean_string(evidence.source_text if evidence else None) or infer_source_text(lines, key, value)

        if evidence is not None and evidence.confidence is not None:
            confidence = clamp(evidence.confidence, 0.0, 1.0)
        else:
            confidence = infer_field_confidence(key, value, extracted.confidence, has_source=bool(snippet))

        meta[key] = FieldMeta(confidence=confidence, source_text=snippet or NO_SOURCE_SENTINEL)

    return meta


def infer_field_confidence(key: str, value: Any, global_confidence: float, *, has_source: bool) -> float:
    if is_empty_value(value):
        return EMPTY_FIELD_CONFIDENCE

    base = clamp(global_confidence, 0.35, 0.95) - 0.08
    base += 0.12 if has_source else -0.08
    if key in CLASSIFIED_FIELDS:
        base -= 0.05
    return round(clamp(base, 0.0, 1.0), 4)


def infer_source_text(lines: list[str], key: str, value: Any) -> str:
    if not lines:
        return ""

    pattern = SOURCE_LINE_PATTERNS.get(key)
    if pattern is not None:
        for line in lines:
            if pattern.search(line):
                return line

    for line in lines:
        if line_matches_value(line, value):
            return line

    if key == "vendor_name":
        return lines[0]
    return ""


def _number_variants(value: float) -> set[str]:
    rounded = round2(value)
    plain = f"{rounded:.2f}".rstrip("0").rstrip(".")
    integer = str(int(math.floor(value + 0.5)))
    variants = {plain, integer, plain.replace(".", ","), format_number(rounded)}
    return {item for item in variants if item}


def _date_variants(value: date) -> set[str]:
    y, m, d = f"{value.year:04d}", f"{value.month:02d}", f"{value.day:02d}"
    return {f"{y}-{m}-{d}", f"{y}/{m}/{d}", f"{d}-{m}-{y}", f"{d}/{m}/{y}", f"{d}.{m}.{y}"}


def line_matches_value(line: str, value: Any) -> bool:
    if is_empty_value(value):
        return False
    lower = line.lower()

    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return any(variant in lower for variant in _number_variants(float(value)))
    if isinstance(value, date):
        return any(variant in lower for variant in _date_variants(value))

    text_value = str(value).strip().lower()
    return len(text_value) >= 3 and text_value in lower
