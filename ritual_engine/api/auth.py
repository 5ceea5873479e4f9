"""
Authentication glue. Credentials live with the external identity provider;
the engine only verifies a bearer JWT and reads the user id from ``sub``.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ritual_engine.config import Settings, settings
from ritual_engine.errors import Unauthorized

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    sub: str,
    *,
    app_settings: Optional[Settings] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    app_settings = app_settings or settings
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or app_settings.jwt_expire_minutes)
    payload = {
        "sub": sub,
        "exp": expire,
        "iat": now,
        "jti": str(uuid4())[:8],
    }
    return jwt.encode(payload, app_settings.jwt_secret, algorithm=app_settings.jwt_algorithm)


def decode_token(token: str, app_settings: Optional[Settings] = None) -> dict:
    app_settings = app_settings or settings
    try:
        return jwt.decode(token, app_settings.jwt_secret, algorithms=[app_settings.jwt_algorithm])
    except JWTError:
        raise Unauthorized("Invalid token", authenticated=False)


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None:
        raise Unauthorized("Authentication required", authenticated=False)
    payload = decode_token(credentials.credentials, getattr(request.app.state, "settings", None))
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token", authenticated=False)
    return str(user_id)
