import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from kostnadskoll.core.config import get_settings
from kostnadskoll.core.dependencies import get_session_factory
from kostnadskoll.services.market.service import get_market_comparator

TEST_JWT_SECRET = "test-secret-for-kostnadskoll"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Tests patch env vars; never leak a cached Settings (or comparator) across tests.
    get_settings.cache_clear()
    get_market_comparator.cache_clear()
    get_session_factory.cache_clear()
    yield
    get_settings.cache_clear()
    get_market_comparator.cache_clear()
    get_session_factory.cache_clear()


def make_token(sub: str = "user-1", *, secret: str = TEST_JWT_SECRET, expires_in: int = 3600, **claims) -> str:
    payload = {
        "sub": sub,
        "email": f"{sub}@example.com",
        "iat": int(datetime.now(timezone.utc).timestamp()),
        "exp": int((datetime.now(timezone.utc) + timedelta(seconds=expires_in)).timestamp()),
    }
    payload.update(claims)
    token = jwt.encode(payload, secret, algorithm="HS256")
    if isinstance(token, bytes):
        token = token.decode("utf-8")
    return token


def auth_header(sub: str = "user-1", **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, **kwargs)}"}


@pytest.fixture
def no_ai_env():
    """Environment with every external credential removed."""
    keys = ("OPENAI_API_KEY", "SERPAPI_API_KEY", "SERPAPI_KEY", "AI_PROVIDER", "AI_INVOICE_PROVIDER")
    saved = {key: os.environ.pop(key) for key in keys if key in os.environ}
    get_settings.cache_clear()
    yield
    os.environ.update(saved)
    get_settings.cache_clear()
