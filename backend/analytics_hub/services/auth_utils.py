# backend/analytics_hub/services/auth_utils.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt  # PyJWT

from ..config import settings


# -------------------------------
# JWT (access token)
# -------------------------------
def create_access_token(
    subject: str,
    extra_claims: Optional[Dict[str, Any]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Sign a token the same way the identity provider does (HS256, aud=authenticated).
    Used by tooling and tests; the API itself only verifies tokens.
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=int(expires_minutes or settings.JWT_EXPIRE_MIN))
    payload: Dict[str, Any] = {
        "sub": subject,
        "role": "authenticated",
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises jwt.InvalidTokenError when the signature, audience or expiry check fails."""
    kwargs: Dict[str, Any] = {"algorithms": [settings.JWT_ALG], "options": {"require": ["exp", "sub"]}}
    if settings.JWT_AUDIENCE:
        kwargs["audience"] = settings.JWT_AUDIENCE
    else:
        kwargs["options"]["verify_aud"] = False
    return jwt.decode(token, settings.JWT_SECRET, **kwargs)
