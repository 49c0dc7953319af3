"""In-memory storage backend for tests and local development.

Holds short-lived wallet sign-in challenges when Redis is not configured.
Everything lives in Python dictionaries with per-entry expiry, so the test
suite runs without external services.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

# Public storage dictionary used by the test-suite fixtures.  The individual
# buckets are populated by ``init_storage``.
STORAGE: Dict[str, Dict[str, Dict[str, Any]]] = {}


def init_storage() -> None:
    """Initialise the in-memory storage buckets.

    Re-initialising recreates the bucket dictionaries but leaves the
    ``STORAGE`` object itself in place so references held by fixtures remain
    valid.
    """

    buckets = {
        "wallet_challenges": {},
    }

    STORAGE.update(buckets)
    for key in list(STORAGE.keys()):
        if key not in buckets:
            STORAGE.pop(key)


def _get_bucket(name: str) -> Dict[str, Dict[str, Any]]:
    if name not in STORAGE:
        init_storage()
    return STORAGE[name]


def _store_value(bucket_name: str, key: str, value: Any, ttl: Optional[int] = None) -> None:
    bucket = _get_bucket(bucket_name)
    expires_at: Optional[datetime] = None
    if ttl:
        expires_at = datetime.utcnow() + timedelta(seconds=ttl)

    bucket[key] = {
        "value": copy.deepcopy(value),
        "expires_at": expires_at,
    }


def _get_value(bucket_name: str, key: str) -> Optional[Any]:
    bucket = _get_bucket(bucket_name)
    entry = bucket.get(key)
    if not entry:
        return None

    expires_at = entry.get("expires_at")
    if isinstance(expires_at, datetime) and expires_at < datetime.utcnow():
        bucket.pop(key, None)
        return None

    return copy.deepcopy(entry.get("value"))


def _delete_value(bucket_name: str, key: str) -> None:
    bucket = _get_bucket(bucket_name)
    bucket.pop(key, None)


def store_wallet_challenge(wallet_address: str, challenge_data: Dict[str, Any], ttl: Optional[int] = None) -> None:
    _store_value("wallet_challenges", wallet_address, challenge_data, ttl)


def get_wallet_challenge(wallet_address: str) -> Optional[Dict[str, Any]]:
    return _get_value("wallet_challenges", wallet_address)


def delete_wallet_challenge(wallet_address: str) -> None:
    _delete_value("wallet_challenges", wallet_address)


# Ensure buckets exist on import so fixtures can use STORAGE immediately.
init_storage()
