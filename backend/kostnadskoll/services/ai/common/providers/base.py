"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


@dataclass(frozen=True)
class PromptAttachment:
    """A document sent alongside the prompt. ``kind`` is ``"image"`` or ``"pdf"``."""

    kind: str
    name: str
    data_url: str


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement."""

    name: str = "base"

    @abc.abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        attachments: Sequence[PromptAttachment] = (),
        model: str = "",
        temperature: float = 0.0,
        max_tokens: int = 900,
        timeout_seconds: float = 30.0,
    ) -> ProviderResult:
        """Send *prompt* (plus optional attachments) and return a ``ProviderResult``."""
