from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MARKET_CACHE_TTL_MIN_HOURS = 1
MARKET_CACHE_TTL_MAX_HOURS = 168
MARKET_PROVIDER_CHOICES = {"auto", "fallback", "serpapi"}
# Providers that can back a live scan. "mock" is routable but never enables AI mode.
AI_PROVIDER_CHOICES = {"openai"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )

    database_url: str = ""

    auth_jwt_secret: str = Field(
        default="",
        validation_alias=AliasChoices("AUTH_JWT_SECRET", "JWT_SECRET"),
    )
    auth_jwt_audience: str = Field(
        default="",
        validation_alias=AliasChoices("AUTH_JWT_AUDIENCE", "JWT_AUDIENCE"),
    )

    # --- AI extraction ---
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1-mini"
    ai_provider: str = Field(
        default="openai",
        validation_alias=AliasChoices("AI_PROVIDER", "AI_INVOICE_PROVIDER"),
    )
    ai_timeout_seconds: float = 30.0
    ai_max_output_tokens: int = 900
    ai_temperature: float = 0.0

    # --- Market comparison ---
    serpapi_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("SERPAPI_API_KEY", "SERPAPI_KEY"),
    )
    market_compare_provider: str = "auto"
    market_compare_cache_ttl_hours: int = 24
    market_compare_timeout_seconds: float = 9.0
    market_compare_max_items: int = 30

    history_default_limit: int = 40

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False
    security_headers_enabled: bool = True

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PUT",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("market_compare_provider", "ai_provider", mode="before")
    @classmethod
    def _lower_choice(cls, value):
        if value is None:
            return ""
        return str(value).strip().lower()

    @field_validator("market_compare_cache_ttl_hours", mode="before")
    @classmethod
    def _coerce_ttl_hours(cls, value):
        # Non-numeric values fall back to the default instead of failing startup.
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return 24
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 24

    @property
    def ai_enabled(self) -> bool:
        return self.ai_provider in AI_PROVIDER_CHOICES and bool(self.openai_api_key.strip())

    @property
    def market_provider(self) -> str:
        """Resolved provider: ``serpapi`` only when a key is present and not forced off."""
        configured = self.market_compare_provider
        if configured not in MARKET_PROVIDER_CHOICES:
            configured = "auto"
        if configured == "fallback":
            return "fallback"
        return "serpapi" if self.serpapi_api_key.strip() else "fallback"

    @property
    def market_cache_ttl_hours(self) -> int:
        return min(
            MARKET_CACHE_TTL_MAX_HOURS,
            max(MARKET_CACHE_TTL_MIN_HOURS, int(self.market_compare_cache_ttl_hours)),
        )

    @property
    def market_cache_ttl_seconds(self) -> float:
        return float(self.market_cache_ttl_hours * 3600)


@lru_cache

def get_settings() -> Settings:
    return Settings()
