import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from kostnadskoll.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def _decode_options(settings):
    """Audience is verified only when one is configured."""
    audience = (settings.auth_jwt_audience or "").strip()
    if audience:
        return {"audience": audience}, {"verify_aud": True}
    return {}, {"verify_aud": False}


def decode_token(token: str) -> dict:
    settings = get_settings()
    decode_kwargs, options = _decode_options(settings)
    return jwt.decode(
        token,
        settings.auth_jwt_secret,
        algorithms=["HS256"],
        options=options,
        **decode_kwargs,
    )


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Saknar Bearer-token")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()
    if not settings.auth_jwt_secret:
        raise HTTPException(500, "AUTH_JWT_SECRET är inte konfigurerad")

    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(401, "Token har gått ut")
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise HTTPException(401, "Ogiltig token")

    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise HTTPException(401, "Token saknar användar-id")

    email = payload.get("email")
    return CurrentUser(id=user_id, email=email if isinstance(email, str) else None)
