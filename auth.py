import logging
from typing import Optional

import jwt
from fastapi import Request

from config import get_settings
from errors import Unauthorized

logger = logging.getLogger(__name__)


def extract_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def verify_token(token: str) -> str:
    """Return the caller id (`sub`) of a bearer token issued by the auth provider."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"], "verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.PyJWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        raise Unauthorized("Invalid token")
    aud = payload.get("aud")
    if aud == settings.blob_token_audience or (isinstance(aud, list) and settings.blob_token_audience in aud):
        logger.debug("Rejected bearer token: download link token")
        raise Unauthorized("Invalid token")
    return str(payload["sub"])


def get_current_user_id(request: Request) -> str:
    token = extract_token(request)
    if not token:
        raise Unauthorized("No authentication token available")
    return verify_token(token)
