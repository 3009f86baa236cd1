"""Caller identity: counselor API keys and the forwarded end-user id."""

from __future__ import annotations

import hashlib
import logging

from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader

from afyalink.config import settings
from afyalink.services.metrics import metrics

logger = logging.getLogger("afyalink.auth")

_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Identity used for counselor-only routes when AUTH_ENABLED=false.
DEV_COUNSELOR_ID = "dev-counselor"


def hash_key(key: str) -> str:
    """Return the SHA-256 hex digest of a key."""
    return hashlib.sha256(key.encode()).hexdigest()


def _is_sha256_hex(value: str) -> bool:
    if len(value) != 64:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True


def counselor_key_hashes() -> dict[str, str]:
    """Parse ``COUNSELOR_API_KEYS`` into ``{key_hash: counselor_id}``.

    Entries are comma-separated ``counselor_id:key`` pairs. A 64-character
    hex key is taken as already hashed; anything else is hashed here.
    """
    mapping: dict[str, str] = {}
    for entry in settings.counselor_api_keys.split(","):
        entry = entry.strip()
        if not entry:
            continue
        counselor_id, sep, key = entry.partition(":")
        if not sep or not counselor_id.strip() or not key.strip():
            logger.warning("Ignoring malformed COUNSELOR_API_KEYS entry")
            continue
        key = key.strip()
        mapping[key if _is_sha256_hex(key) else hash_key(key)] = counselor_id.strip()
    return mapping


async def require_counselor(api_key: str | None = Security(_header)) -> str:
    """Resolve the ``X-API-Key`` header to a counselor id (401/403 otherwise)."""
    if not settings.auth_enabled:
        return DEV_COUNSELOR_ID

    if api_key is None:
        metrics.inc_auth_failure()
        raise HTTPException(status_code=401, detail="Missing API key")

    counselor_id = counselor_key_hashes().get(hash_key(api_key))
    if counselor_id is None:
        metrics.inc_auth_failure()
        raise HTTPException(status_code=403, detail="Counselor access required")
    return counselor_id


async def optional_counselor(api_key: str | None = Security(_header)) -> str | None:
    """Counselor id when a valid key is sent, otherwise ``None`` (no error)."""
    if api_key is None:
        return None
    if not settings.auth_enabled:
        return DEV_COUNSELOR_ID
    return counselor_key_hashes().get(hash_key(api_key))


async def optional_user_id(
    x_user_id: str | None = Header(None, max_length=64),
) -> str | None:
    """End-user id forwarded by the authentication gateway, if signed in."""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None
