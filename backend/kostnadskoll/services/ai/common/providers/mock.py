"""Mock provider: returns an empty extraction so the rule-based values win."""

from __future__ import annotations

import time
from typing import Sequence

from .base import BaseProvider, PromptAttachment, ProviderResult

EMPTY_EXTRACTION = '{"extracted": {}, "field_meta": {}}'


class MockProvider(BaseProvider):
    name = "mock"

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
        t0 = time.monotonic()
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=EMPTY_EXTRACTION,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(EMPTY_EXTRACTION.split()),
            latency_ms=round(elapsed, 2),
        )
