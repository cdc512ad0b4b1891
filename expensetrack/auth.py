"""HMAC-signed bearer tokens identifying the conversation owner."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Optional

from .errors import AuthError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 15 * 60


def _signature(secret: str, body: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def issue_access_token(owner_id: int, secret: str, *, ttl: int = DEFAULT_TTL_SECONDS, now: Optional[float] = None) -> str:
    if isinstance(owner_id, bool) or not isinstance(owner_id, int) or owner_id <= 0:
        raise ValueError(f"owner_id must be a positive integer, got {owner_id!r}")
    expires = int((now if now is not None else time.time()) + ttl)
    body = f"{owner_id}.{expires}"
    return f"{body}.{_signature(secret, body)}"


def verify_access_token(token: str, secret: str, *, now: Optional[float] = None) -> int:
    """Return the owner id carried by ``token`` or raise :class:`AuthError`."""

    parts = token.strip().split(".")
    if len(parts) != 3:
        raise AuthError("Malformed access token")
    owner_raw, expires_raw, signature = parts
    expected = _signature(secret, f"{owner_raw}.{expires_raw}")
    if not hmac.compare_digest(expected, signature):
        raise AuthError("Invalid access token signature")
    try:
        owner_id = int(owner_raw)
        expires = int(expires_raw)
    except ValueError as exc:
        raise AuthError("Malformed access token") from exc
    if owner_id <= 0:
        raise AuthError("Malformed access token")
    if expires < (now if now is not None else time.time()):
        logger.debug("Rejected expired token for owner %s", owner_id)
        raise AuthError("Access token expired")
    return owner_id


__all__ = ["DEFAULT_TTL_SECONDS", "issue_access_token", "verify_access_token"]
