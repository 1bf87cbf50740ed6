"""AI router: resolves provider + model + limits for a scope from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from kostnadskoll.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4.1-mini",
    "mock": "mock-v1",
}


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model for one AI call."""

    provider: BaseProvider
    model: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


def resolve(scope: str) -> ResolvedConfig:
    """Resolve provider + model for *scope*.

    Only ``invoice_extract`` exists today; unknown scopes share its settings.
    An empty model name falls back to the provider default.
    """
    settings = get_settings()
    provider_name = settings.ai_provider or "openai"

    model = ""
    if provider_name == "openai":
        model = settings.openai_model.strip()
    if not model:
        model = DEFAULT_MODELS.get(provider_name, "")

    if scope != "invoice_extract":
        logger.debug("No dedicated AI config for scope %r, using invoice_extract defaults", scope)

    return ResolvedConfig(
        provider=get_provider(provider_name),
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=max(1, settings.ai_max_output_tokens),
        timeout_seconds=max(1.0, settings.ai_timeout_seconds),
    )
