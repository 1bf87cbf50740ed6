"""OpenAI provider (Responses API, text + image/PDF input)."""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

from .base import BaseProvider, PromptAttachment, ProviderResult

logger = logging.getLogger(__name__)

RESPONSES_URL = "https://api.openai.com/v1/responses"
EMPTY_INPUT_TEXT = "No usable invoice content found."


def response_output_text(data: dict[str, Any]) -> str:
    """``output_text`` when present, else every ``output[].content[].text`` joined."""
    direct = data.get("output_text")
    if isinstance(direct, str) and direct.strip():
        return direct.strip()

    parts: list[str] = []
    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and isinstance(content.get("text"), str):
                parts.append(content["text"])
    return "\n".join(parts).strip()


def _user_content(prompt: str, attachments: Sequence[PromptAttachment]) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    if prompt.strip():
        content.append({"type": "input_text", "text": prompt})

    for attachment in attachments:
        if attachment.kind == "image":
            content.append({"type": "input_image", "image_url": attachment.data_url, "detail": "high"})
        elif attachment.kind == "pdf":
            content.append(
                {
                    "type": "input_file",
                    "filename": attachment.name or "invoice.pdf",
                    "file_data": attachment.data_url,
                }
            )

    if not content:
        content.append({"type": "input_text", "text": EMPTY_INPUT_TEXT})
    return content


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(self, api_key: str, *, transport=None) -> None:
        self._api_key = api_key
        self._transport = transport

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
        import httpx

        model = model or "gpt-4.1-mini"
        t0 = time.monotonic()

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": [{"type": "input_text", "text": system_prompt}]})
        messages.append({"role": "user", "content": _user_content(prompt, attachments)})

        async with httpx.AsyncClient(timeout=timeout_seconds, transport=self._transport) as client:
            resp = await client.post(
                RESPONSES_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": model,
                    "temperature": temperature,
                    "max_output_tokens": max_tokens,
                    "input": messages,
                },
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        usage = data.get("usage") or {}

        return ProviderResult(
            raw_text=response_output_text(data),
            model=data.get("model") or model,
            provider=self.name,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
