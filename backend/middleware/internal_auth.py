"""
Internal Service Authentication

The reconciliation endpoints are called by other backend services (the
entry grid backend, import jobs, schedulers), never by browsers. Each
caller presents a shared API key and may forward the id of the user it
acts for; that id becomes the actor recorded on runs and audit events.

Settings:
    INTERNAL_API_KEY: Primary key
    INTERNAL_API_KEYS: Comma-separated extra keys, accepted during rotation

Headers:
    X-Internal-Api-Key: <api_key>
    X-Service-Name: <service_name> (optional)
    X-User-Id: <user_id> (optional)
"""

import secrets
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from config import get_settings
from logging_config import set_request_context

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Internal-Api-Key"
SERVICE_NAME_HEADER = "X-Service-Name"
USER_ID_HEADER = "X-User-Id"


@dataclass(frozen=True)
class InternalService:
    """An authenticated caller."""
    name: str
    key_suffix: str  # last 4 chars, for logs only
    user_id: Optional[str] = None

    @property
    def actor(self) -> str:
        return self.user_id or f"service:{self.name}"


@lru_cache(maxsize=1)
def _get_valid_api_keys() -> FrozenSet[str]:
    keys = frozenset(get_settings().internal_api_keys)
    if not keys:
        logger.warning("No internal API keys configured; reconciliation endpoints will answer 503")
    return keys


def reset_key_cache():
    """Forget cached keys (after settings change, e.g. in tests)."""
    _get_valid_api_keys.cache_clear()


def is_internal_auth_configured() -> bool:
    return bool(_get_valid_api_keys())


def validate_internal_key(api_key: Optional[str]) -> bool:
    """Constant-time check of ``api_key`` against every configured key."""
    if not api_key:
        return False
    matched = False
    for valid_key in _get_valid_api_keys():
        # every key is compared, even after a match
        matched |= secrets.compare_digest(api_key.encode(), valid_key.encode())
    return matched


api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"}
    )


async def get_internal_service(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> InternalService:
    """
    FastAPI dependency guarding the reconciliation endpoints.

    Raises:
        HTTPException: 503 when no keys are configured, 401 when the key
        is missing or wrong
    """
    service_name = request.headers.get(SERVICE_NAME_HEADER) or "unknown"

    if not is_internal_auth_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal authentication not configured"
        )
    if not api_key:
        logger.warning(f"Missing API key from service: {service_name}")
        raise _unauthorized("Missing internal API key")
    if not validate_internal_key(api_key):
        logger.warning(f"Invalid API key from service: {service_name}")
        raise _unauthorized("Invalid internal API key")

    user_id = request.headers.get(USER_ID_HEADER) or None
    set_request_context(user_id=user_id)

    return InternalService(name=service_name, key_suffix=api_key[-4:], user_id=user_id)
