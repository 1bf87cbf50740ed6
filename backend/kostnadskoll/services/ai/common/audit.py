"""AI audit: one structured log record per model call. Prompts are hashed, never logged raw."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from .providers.base import ProviderResult

logger = logging.getLogger(__name__)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def log_ai_run(
    *,
    scope: str,
    provider_result: ProviderResult,
    prompt_text: str,
    parsed_output: dict[str, Any] | None,
    extra_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Log an ``AI_RUN`` record and return the metadata that was logged."""
    metadata: dict[str, Any] = {
        "scope": scope,
        "provider": provider_result.provider,
        "model": provider_result.model,
        "prompt_tokens": provider_result.prompt_tokens,
        "completion_tokens": provider_result.completion_tokens,
        "latency_ms": provider_result.latency_ms,
        "prompt_hash": _digest(prompt_text),
        "response_hash": _digest(provider_result.raw_text),
        "parsed": parsed_output is not None,
    }
    if extra_meta:
        metadata.update(extra_meta)

    logger.info(
        "AI_RUN scope=%s provider=%s model=%s tokens=%s/%s latency_ms=%.1f parsed=%s",
        scope,
        metadata["provider"],
        metadata["model"],
        metadata["prompt_tokens"],
        metadata["completion_tokens"],
        metadata["latency_ms"],
        metadata["parsed"],
        extra={"ai_run": metadata},
    )
    return metadata
