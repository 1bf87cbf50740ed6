"""Service-layer exceptions.

Routers translate these into HTTP responses; engines never raise them.
Messages are user-facing (Swedish).
"""

from __future__ import annotations


class KostnadskollError(Exception):
    default_message = "Något gick fel."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingInputError(KostnadskollError):
    default_message = "Ingen fakturadata skickades in. Ladda upp fil eller skicka text."


class UpstreamAIError(KostnadskollError):
    default_message = "AI-analysen kunde inte genomföras just nu."


class UpstreamMarketError(KostnadskollError):
    default_message = "Live-data kunde inte hämtas just nu."


class NotFoundError(KostnadskollError):
    default_message = "Historikposten finns inte."


class OwnershipError(NotFoundError):
    """Record exists but belongs to someone else; reported exactly like a missing record."""


class ValidationError(KostnadskollError):
    default_message = "Ogiltig förfrågan."
