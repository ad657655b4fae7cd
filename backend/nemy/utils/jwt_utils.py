from __future__ import annotations

import logging
import os
import time

import jwt

logger = logging.getLogger(__name__)

ISSUER = "nemy-backend"
ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret"


def _ttl() -> int:
    try:
        return max(60, int((os.getenv("NEMY_TOKEN_TTL_SECONDS") or DEFAULT_TTL_SECONDS)))
    except ValueError:
        return DEFAULT_TTL_SECONDS


def create_token(user_id: str, ttl_seconds: int | None = None) -> str:
    """Sign an access token whose subject is the user id; the role is always read from the users table."""
    issued = int(time.time())
    claims = {
        "sub": str(user_id),
        "iss": ISSUER,
        "iat": issued,
        "exp": issued + int(ttl_seconds or _ttl()),
    }
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, _secret(), algorithms=[ALGORITHM], issuer=ISSUER, options={"require": ["sub", "exp"]})
    except jwt.ExpiredSignatureError:
        logger.info("access_token_expired")
    except jwt.InvalidTokenError as e:
        logger.info("access_token_rejected err=%s", e.__class__.__name__)
    return None


def get_bearer_token(auth_header: str) -> str | None:
    scheme, _, token = (auth_header or "").strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        return None
    return token


def subject_from_header(auth_header: str) -> str | None:
    token = get_bearer_token(auth_header)
    claims = decode_token(token) if token else None
    sub = str((claims or {}).get("sub") or "").strip()
    return sub or None
