"""JWT helpers.

Tokens are issued by the account service; this backend only needs to decode
them. `create_access_token` is kept for tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
import secrets
from app.core.config import settings


def _create_jwt(payload: Dict[str, Any], expires_delta: timedelta) -> tuple[str, str]:
    expire = datetime.now(timezone.utc) + expires_delta
    jti = secrets.token_urlsafe(32)

    payload.update({
        "exp": expire,
        "jti": jti,
    })

    token = jwt.encode(
        payload,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    return token, jti


def create_access_token(
    user_id: int,
    email: str,
    user_type: str,
    expires_delta: Optional[timedelta] = None,
) -> tuple[str, str]:
    return _create_jwt(
        payload={
            "sub": str(user_id),
            "email": email,
            "user_type": user_type,
        },
        expires_delta=expires_delta
        or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError:
        return None
