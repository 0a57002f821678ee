"""
Identity cache — acquired identities kept in the secure store.

Each cached identity is one secure store entry whose payload is the
JSON form of the IdentityResult and whose expiry is the access token's.
Reads are speculative: a missing, unreadable, or corrupt entry is a
miss, never an error.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from packforge.core.models.identity import IdentityResult
from packforge.core.models.secure import SecureStorePutOptions
from packforge.core.security.secure_store import SecureStore, SecureStoreError

logger = logging.getLogger(__name__)

CACHE_KIND = "identity.cache"


class SecureIdentityCache:
    def __init__(self, store: SecureStore):
        self._store = store

    def try_get(self, cache_key: str) -> IdentityResult | None:
        try:
            secret = self._store.try_get(cache_key)
        except (SecureStoreError, OSError, ValueError) as e:
            logger.warning("Identity cache read failed for %s: %s", cache_key, e)
            return None
        if secret is None:
            return None

        try:
            return IdentityResult.model_validate_json(secret.payload)
        except ValidationError as e:
            logger.warning("Discarding corrupt identity cache entry %s: %s", cache_key, e)
            return None

    def set(self, cache_key: str, identity: IdentityResult) -> None:
        expires = identity.access_token.expires_at if identity.access_token else None
        options = SecureStorePutOptions(expires_at=expires, metadata={"kind": CACHE_KIND})
        try:
            self._store.put(cache_key, identity.model_dump_json().encode("utf-8"), options)
        except (SecureStoreError, OSError) as e:
            logger.warning("Identity cache write failed for %s: %s", cache_key, e)
