"""Deterministic invoice extraction from plain text.

Used on its own when AI is unavailable and as the default-filler for every
AI extraction (see ``normalizer.normalize_extracted``).
"""

from __future__ import annotations

import re

from kostnadskoll.schemas.invoice import (
    DEFAULT_CURRENCY,
    DEFAULT_VENDOR,
    Category,
    ExtractedInvoice,
    PaymentMethod,
)
from kostnadskoll.services.extraction.vocabulary import (
    FIELD_PATTERNS,
    guess_category,
    guess_payment_method,
)
from kostnadskoll.services.text_tools import clamp, normalize_date, to_number

BASE_CONFIDENCE = 0.25
CONFIDENCE_WEIGHTS: dict[str, float] = {
    "vendor_name": 0.15,
    "total_amount": 0.15,
    "due_date": 0.10,
    "invoice_number": 0.10,
    "customer_number": 0.10,
    "ocr_reference": 0.10,
    "category": 0.10,
    "payment_method": 0.10,
}

_PERCENT_AFTER = re.compile(r"^[ \t]*%")
_NEXT_AMOUNT = re.compile(r"([0-9][0-9 \u00a0.,]*)")


def first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def find_match(text: str, patterns) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return ""


def _find_amount(text: str, patterns) -> float | None:
    """First labelled amount; percent rates ("moms 25%") are skipped in favour of the next number on the line."""
    for pattern in patterns:
        for match in pattern.finditer(text):
            end = match.end(1)
            candidate = match.group(1)
            rest_of_line = text[end:].split("\n", 1)[0]
            if _PERCENT_AFTER.match(rest_of_line):
                follow = _NEXT_AMOUNT.search(rest_of_line.lstrip(" \t%"))
                if not follow:
                    continue
                candidate = follow.group(1)
            number = to_number(candidate.strip(" \u00a0.,"))
            if number is not None:
                return number
    return None


def _find_date(text: str, patterns):
    raw = find_match(text, patterns)
    return normalize_date(raw.strip(".-/")) if raw else None


def heuristic_confidence(invoice: ExtractedInvoice) -> float:
    score = BASE_CONFIDENCE
    if invoice.vendor_name and invoice.vendor_name != DEFAULT_VENDOR:
        score += CONFIDENCE_WEIGHTS["vendor_name"]
    if invoice.total_amount is not None:
        score += CONFIDENCE_WEIGHTS["total_amount"]
    if invoice.due_date is not None:
        score += CONFIDENCE_WEIGHTS["due_date"]
    if invoice.invoice_number:
        score += CONFIDENCE_WEIGHTS["invoice_number"]
    if invoice.customer_number:
        score += CONFIDENCE_WEIGHTS["customer_number"]
    if invoice.ocr_reference:
        score += CONFIDENCE_WEIGHTS["ocr_reference"]
    if invoice.category != Category.OTHER:
        score += CONFIDENCE_WEIGHTS["category"]
    if invoice.payment_method != PaymentMethod.UNKNOWN:
        score += CONFIDENCE_WEIGHTS["payment_method"]
    return round(clamp(score, 0.0, 1.0), 4)


def extract_with_rules(text: str | None) -> ExtractedInvoice:
    source = text if isinstance(text, str) else ""

    invoice = ExtractedInvoice(
        vendor_name=first_line(source) or DEFAULT_VENDOR,
        category=guess_category(source),
        monthly_cost=_find_amount(source, FIELD_PATTERNS["monthly_cost"]),
        total_amount=_find_amount(source, FIELD_PATTERNS["total_amount"]),
        currency=DEFAULT_CURRENCY,
        due_date=_find_date(source, FIELD_PATTERNS["due_date"]),
        invoice_date=_find_date(source, FIELD_PATTERNS["invoice_date"]),
        customer_number=find_match(source, FIELD_PATTERNS["customer_number"]),
        invoice_number=find_match(source, FIELD_PATTERNS["invoice_number"]),
        organization_number=find_match(source, FIELD_PATTERNS["organization_number"]),
        ocr_reference=find_match(source, FIELD_PATTERNS["ocr_reference"]),
        vat_amount=_find_amount(source, FIELD_PATTERNS["vat_amount"]),
        payment_method=guess_payment_method(source),
    )
    invoice.confidence = heuristic_confidence(invoice)
    return invoice
