"""
Auth utilities for the exam-prep API.

Validates HS256 JWTs signed with JWT_SECRET and extracts user_id from the
`sub` claim. Outside production an X-User-Id header is accepted instead
(local development and tests). Tokens are issued elsewhere.
"""
import logging
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Request

from examprep.core.config import settings

logger = logging.getLogger("examprep")


def verify_jwt(token: str) -> str:
    """
    Verify a bearer token and return its subject.

    Raises:
        HTTPException 401: No secret configured, invalid or expired token
    """
    if not settings.JWT_SECRET:
        logger.debug("No JWT_SECRET configured, rejecting bearer token")
        raise HTTPException(status_code=401, detail="Token verification unavailable")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return str(user_id)


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Development: user ID without a token"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. JWT from Authorization header (an invalid token is never bypassed)
    2. X-User-Id header, except in production
    3. Raise 401 Unauthorized
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return verify_jwt(auth_header[7:])

    if x_user_id and settings.ENV.lower() != "production":
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
