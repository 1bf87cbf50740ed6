"""Invoice extraction scope contracts: prompt shape + the result handed to the scan service."""

from __future__ import annotations

from pydantic import BaseModel

from kostnadskoll.schemas.invoice import FIELD_KEYS, Category, PaymentMethod, RawInvoicePayload

_FIELD_TYPES: dict[str, str] = {
    "monthly_cost": "number|null",
    "total_amount": "number|null",
    "vat_amount": "number|null",
    "due_date": '"YYYY-MM-DD"|null',
    "invoice_date": '"YYYY-MM-DD"|null',
}


def _json_shape() -> str:
    extracted = ",\n".join(f'    "{key}": {_FIELD_TYPES.get(key, "string|null")}' for key in FIELD_KEYS)
    meta = ",\n".join(f'    "{key}": {{ "confidence": number, "source_text": string }}' for key in FIELD_KEYS)
    return (
        "{\n"
        '  "extracted": {\n'
        f"{extracted},\n"
        '    "confidence": number\n'
        "  },\n"
        '  "field_meta": {\n'
        f"{meta}\n"
        "  }\n"
        "}"
    )


SYSTEM_PROMPT = "\n".join(
    [
        "You extract structured data from invoices.",
        "Return only valid JSON. Do not add markdown.",
        "Use this JSON shape:",
        _json_shape(),
        "Rules:",
        "- Use confidence values from 0 to 1.",
        "- source_text should be a short quote from the OCR text when possible.",
        "- monthly_cost, total_amount and vat_amount are numbers without currency symbols.",
        "- monthly_cost must be null unless a monthly amount is explicitly stated "
        "(for example '/mån', 'månadskostnad', 'månadsavgift').",
        "- currency should be an ISO code like SEK, EUR or USD.",
        "- due_date and invoice_date must be YYYY-MM-DD or null.",
        "- category should be one of: " + ", ".join(c.value for c in Category) + ".",
        "- payment_method should be one of: " + ", ".join(p.value for p in PaymentMethod) + ".",
    ]
)


class AIInvoiceExtractResult(BaseModel):
    """Parsed model output plus which model produced it."""

    payload: RawInvoicePayload
    provider: str
    model: str
    latency_ms: float = 0.0
