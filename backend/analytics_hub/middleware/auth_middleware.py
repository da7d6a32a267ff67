# backend/analytics_hub/middleware/auth_middleware.py

from __future__ import annotations

import ipaddress
from typing import Optional

import jwt
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import settings
from ..services.auth_utils import decode_access_token


def _is_private_ip(ip: Optional[str]) -> bool:
    try:
        if not ip:
            return False
        ip_obj = ipaddress.ip_address(ip)
        return ip_obj.is_private or ip_obj.is_loopback
    except ValueError:
        return False


class AuthMiddleware(BaseHTTPMiddleware):
    """Parse `Authorization: Bearer <token>` into request.state.user (None when absent or invalid)."""

    async def dispatch(self, request: Request, call_next):
        # internal callers may skip the token (development only)
        if settings.BYPASS_AUTH_INTERNAL and _is_private_ip(request.client.host if request.client else None):
            request.state.user = {"id": "internal", "email": "internal@local", "role": "service_role"}
            return await call_next(request)

        auth = request.headers.get("authorization") or ""
        request.state.user = None
        if auth.lower().startswith("bearer "):
            token = auth.split(" ", 1)[1].strip()
            try:
                payload = decode_access_token(token)
                request.state.user = {
                    "id": payload.get("sub"),
                    "email": payload.get("email"),
                    "role": payload.get("role", "authenticated"),
                }
            except jwt.InvalidTokenError:
                request.state.user = None

        return await call_next(request)
