"""Invoice extraction via the configured AI provider.

Single attempt, no retry: the scan service falls back to the rule-based
extractor on any failure, so every error here surfaces as ``UpstreamAIError``.
"""

from __future__ import annotations

import logging

from kostnadskoll.schemas.invoice import InvoiceFile, RawInvoicePayload
from kostnadskoll.services.errors import UpstreamAIError

from ..common import router as ai_router
from ..common.audit import log_ai_run
from ..common.json_tools import extract_json_object
from ..common.providers.base import PromptAttachment
from .contracts import SYSTEM_PROMPT, AIInvoiceExtractResult

logger = logging.getLogger(__name__)

SCOPE = "invoice_extract"


def build_user_prompt(text: str | None) -> str:
    stripped = (text or "").strip()
    return f"OCR_TEXT:\n{stripped}" if stripped else ""


def build_attachments(file: InvoiceFile | None) -> list[PromptAttachment]:
    if file is None or not file.data_url:
        return []
    if file.is_image:
        return [PromptAttachment(kind="image", name=file.name, data_url=file.data_url)]
    if file.is_pdf:
        return [PromptAttachment(kind="pdf", name=file.name or "invoice.pdf", data_url=file.data_url)]
    # Other file types are only represented by the OCR text.
    return []


async def extract_invoice_via_ai(text: str | None, file: InvoiceFile | None = None) -> AIInvoiceExtractResult:
    """Ask the model for ``{extracted, field_meta}``.

    Raises ``UpstreamAIError`` on transport errors, non-2xx replies and
    output that does not contain a JSON object.
    """
    try:
        config = ai_router.resolve(SCOPE)
    except ValueError as exc:
        logger.warning("AI provider could not be resolved: %s", exc)
        raise UpstreamAIError() from exc
    prompt = build_user_prompt(text)
    attachments = build_attachments(file)

    try:
        result = await config.provider.generate(
            prompt,
            system_prompt=SYSTEM_PROMPT,
            attachments=attachments,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )
    except Exception as exc:
        logger.warning("AI invoice extraction call failed (%s): %s", config.provider.name, exc)
        raise UpstreamAIError() from exc

    parsed = extract_json_object(result.raw_text)
    log_ai_run(
        scope=SCOPE,
        provider_result=result,
        prompt_text=prompt,
        parsed_output=parsed,
        extra_meta={"attachments": [a.kind for a in attachments]},
    )

    if parsed is None:
        raise UpstreamAIError("Kunde inte tolka JSON från AI-svar.")

    return AIInvoiceExtractResult(
        payload=RawInvoicePayload.from_untyped(parsed),
        provider=result.provider,
        model=result.model,
        latency_ms=result.latency_ms,
    )
