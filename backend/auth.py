import hmac
import time
from typing import Dict

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from app.settings import get_settings

ADMIN_ROLE = "admin"


def check_admin_password(password: str) -> bool:
    expected = get_settings().admin_password
    if not expected:
        raise ValueError("ADMIN_PASSWORD is not configured on the server")
    return hmac.compare_digest(password.encode(), expected.encode())


def issue_admin_token(subject: str = ADMIN_ROLE) -> str:
    settings = get_settings()
    now = int(time.time())
    claims = {"sub": subject, "role": ADMIN_ROLE, "iat": now, "exp": now + settings.admin_token_ttl_sec}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def verify_admin_token(token: str) -> Dict[str, str]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        raise ValueError("token_expired")
    except InvalidTokenError:
        raise ValueError("invalid_token")
    if payload.get("role") != ADMIN_ROLE or not payload.get("sub"):
        raise ValueError("invalid_subject")
    return payload
