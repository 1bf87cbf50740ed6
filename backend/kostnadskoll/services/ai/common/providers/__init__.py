"""Provider factory: returns the configured provider instance."""

from __future__ import annotations

import logging

from kostnadskoll.core.config import get_settings

from .base import BaseProvider, PromptAttachment, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "PromptAttachment", "ProviderResult", "MockProvider"]


def get_provider(provider_name: str) -> BaseProvider:
    """Return a provider instance for *provider_name*.

    Raises ``ValueError`` for unknown names and for ``openai`` without an API key.
    """
    settings = get_settings()
    name = (provider_name or "").lower().strip()

    if name == "mock":
        return MockProvider()

    if name == "openai":
        if not settings.openai_api_key.strip():
            raise ValueError("OPENAI_API_KEY is not configured")
        from .openai import OpenAIProvider

        return OpenAIProvider(api_key=settings.openai_api_key)

    raise ValueError(f"Unknown AI provider: {name!r}")
