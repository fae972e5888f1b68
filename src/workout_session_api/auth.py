"""
Authentication for the session endpoints.

Callers authenticate with an API key (``X-API-Key``) or a Clerk JWT
(``Authorization: Bearer``). Either way the result is a :class:`CurrentUser`
that routes hand to the session service explicitly.
"""
import logging
import os
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from workout_session_api.models import CurrentUser

logger = logging.getLogger(__name__)

_jwks_client = None
_jwks_domain = None


def get_jwks_client():
    """Get or create the JWKS client for the configured Clerk domain."""
    global _jwks_client, _jwks_domain
    domain = os.getenv("CLERK_DOMAIN", "")
    if not domain:
        return None
    if _jwks_client is None or _jwks_domain != domain:
        _jwks_client = jwt.PyJWKClient(f"https://{domain}/.well-known/jwks.json")
        _jwks_domain = domain
    return _jwks_client


async def get_current_user(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> CurrentUser:
    """
    Authenticate via API key OR Clerk JWT.

    Usage:
        @router.get("/sessions/{session_id}")
        def get_session(session_id: str, user: CurrentUser = Depends(get_current_user)):
            ...
    """
    if x_api_key:
        return validate_api_key(x_api_key)

    if authorization:
        return validate_jwt(authorization)

    raise HTTPException(
        status_code=401,
        detail="Missing authentication. Provide Authorization header or X-API-Key."
    )


def validate_api_key(api_key: str) -> CurrentUser:
    """
    Validate an API key.

    Formats:
    - "sk_test_abc123"            -> user "admin"
    - "sk_test_abc123:user_12345" -> user "user_12345"
    """
    valid_keys = [k.strip() for k in os.getenv("API_KEYS", "").split(",") if k.strip()]

    if not valid_keys:
        logger.warning("No API keys configured (API_KEYS env var empty)")
        raise HTTPException(status_code=401, detail="API key authentication not configured")

    key_part, _, user_part = api_key.partition(":")
    if key_part not in valid_keys:
        raise HTTPException(status_code=401, detail="Invalid API key")

    return CurrentUser(user_id=user_part or "admin", metadata={"auth": "api_key"})


def validate_jwt(authorization: str) -> CurrentUser:
    """Validate a Clerk JWT and return its subject."""
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.split(" ", 1)[1]
    jwks_client = get_jwks_client()

    if not jwks_client:
        raise HTTPException(
            status_code=500,
            detail="JWT validation not configured (missing CLERK_DOMAIN)"
        )

    try:
        signing_key = jwks_client.get_signing_key_from_jwt(token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={"verify_aud": False}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token missing user ID")
    return CurrentUser(user_id=user_id, metadata=payload.get("metadata") or {})
