"""
Secure store — encrypted key/value persistence for signing secrets.

Layout under the store root:

    master.key                 base64 of 32 random bytes (AES-256 key)
    <sanitized id>/
        payload.bin            nonce(12) + tag(16) + ciphertext
        entry.json             {id, createdAt, expiresAt, metadata}

Encryption: AES-256-GCM with a fresh 96-bit nonce per put.

The master key is generated on first use and persisted; afterwards it
is loaded once (lazily, under a lock) and treated as read-only. Entry
writes are not locked: ids are unique per logical secret, and two
concurrent writers to the same id are not supported.

The store never looks inside a payload. What a secret *is* lives in
its metadata (``kind``), which higher layers interpret.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from packforge.core.models.secure import (
    SecureStoreEntry,
    SecureStorePutOptions,
    SecureStoreSecret,
)

logger = logging.getLogger(__name__)

# ── Constants ──────────────────────────────────────────────────

MASTER_KEY_FILE = "master.key"
PAYLOAD_FILE = "payload.bin"
ENTRY_FILE = "entry.json"

KEY_LEN = 32      # AES-256
NONCE_LEN = 12    # 96-bit GCM nonce
TAG_LEN = 16      # 128-bit GCM tag

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class SecureStoreError(Exception):
    """Raised when a stored entry cannot be read back."""


class SecureStore(ABC):
    @abstractmethod
    def put(
        self,
        entry_id: str,
        payload: bytes,
        options: SecureStorePutOptions | None = None,
    ) -> SecureStoreEntry:
        ...

    @abstractmethod
    def try_get(self, entry_id: str) -> SecureStoreSecret | None:
        ...

    @abstractmethod
    def list(self) -> list[SecureStoreEntry]:
        ...

    @abstractmethod
    def delete(self, entry_id: str) -> bool:
        ...


def sanitize_id(entry_id: str) -> str:
    """Map an entry id to a filesystem-safe directory name."""
    safe = _UNSAFE_ID_CHARS.sub("_", entry_id.strip())
    if safe in (".", ".."):
        safe = safe.replace(".", "_")
    return safe


class FileSecureStore(SecureStore):
    """AES-GCM encrypted store rooted at a directory."""

    def __init__(self, root: Path | str):
        self._root = Path(root)
        self._key: bytes | None = None
        self._key_lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    # ── Master key ─────────────────────────────────────────────

    def _master_key(self) -> bytes:
        if self._key is not None:
            return self._key
        with self._key_lock:
            if self._key is None:
                self._key = self._load_or_create_key()
        return self._key

    def _load_or_create_key(self) -> bytes:
        key_path = self._root / MASTER_KEY_FILE
        if key_path.is_file():
            key = base64.b64decode(key_path.read_text(encoding="ascii").strip())
            if len(key) != KEY_LEN:
                raise SecureStoreError(f"Master key at {key_path} has invalid length")
            return key

        self._root.mkdir(parents=True, exist_ok=True)
        key = AESGCM.generate_key(bit_length=KEY_LEN * 8)
        _write_atomic(key_path, base64.b64encode(key))
        try:
            os.chmod(key_path, 0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", key_path)
        logger.info("Generated secure store master key at %s", key_path)
        return key

    # ── Operations ─────────────────────────────────────────────

    def put(self, entry_id, payload, options=None) -> SecureStoreEntry:
        if not entry_id or not entry_id.strip():
            raise ValueError("Entry id must not be blank.")
        options = options or SecureStorePutOptions()

        nonce = os.urandom(NONCE_LEN)
        # AESGCM returns ciphertext with the tag appended
        ct_with_tag = AESGCM(self._master_key()).encrypt(nonce, bytes(payload), None)
        ciphertext, tag = ct_with_tag[:-TAG_LEN], ct_with_tag[-TAG_LEN:]

        entry = SecureStoreEntry(
            id=entry_id,
            created_at=datetime.now(UTC),
            expires_at=options.expires_at,
            metadata=dict(options.metadata),
        )

        entry_dir = self._entry_dir(entry_id)
        entry_dir.mkdir(parents=True, exist_ok=True)
        _write_atomic(entry_dir / PAYLOAD_FILE, nonce + tag + ciphertext)
        _write_atomic(entry_dir / ENTRY_FILE, _entry_to_json(entry).encode("utf-8"))

        logger.debug("Stored secure entry '%s' (%d bytes)", entry_id, len(payload))
        return entry

    def try_get(self, entry_id) -> SecureStoreSecret | None:
        if not entry_id or not entry_id.strip():
            return None
        entry_dir = self._entry_dir(entry_id)
        payload_path = entry_dir / PAYLOAD_FILE
        entry_path = entry_dir / ENTRY_FILE
        if not payload_path.is_file() or not entry_path.is_file():
            return None

        try:
            entry = _entry_from_json(entry_path.read_text(encoding="utf-8"))
        except SecureStoreError as e:
            raise SecureStoreError(f"Entry '{entry_id}': {e}") from e
        blob = payload_path.read_bytes()
        if len(blob) < NONCE_LEN + TAG_LEN:
            raise SecureStoreError(f"Payload for '{entry_id}' is truncated")

        nonce = blob[:NONCE_LEN]
        tag = blob[NONCE_LEN:NONCE_LEN + TAG_LEN]
        ciphertext = blob[NONCE_LEN + TAG_LEN:]
        try:
            payload = AESGCM(self._master_key()).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise SecureStoreError(f"Payload for '{entry_id}' failed authentication") from e

        return SecureStoreSecret(entry=entry, payload=payload)

    def list(self) -> list[SecureStoreEntry]:
        if not self._root.is_dir():
            return []
        entries = []
        for child in sorted(self._root.iterdir()):
            entry_path = child / ENTRY_FILE
            if not entry_path.is_file():
                continue
            try:
                entries.append(_entry_from_json(entry_path.read_text(encoding="utf-8")))
            except SecureStoreError as e:
                logger.warning("Skipping corrupt secure entry %s: %s", child.name, e)
        return entries

    def delete(self, entry_id) -> bool:
        if not entry_id or not entry_id.strip():
            return False
        entry_dir = self._entry_dir(entry_id)
        if not entry_dir.is_dir():
            return False
        shutil.rmtree(entry_dir)
        logger.debug("Deleted secure entry '%s'", entry_id)
        return True

    def _entry_dir(self, entry_id: str) -> Path:
        return self._root / sanitize_id(entry_id)


# ── Serialization helpers ──────────────────────────────────────


def _entry_to_json(entry: SecureStoreEntry) -> str:
    data = {
        "id": entry.id,
        "createdAt": entry.created_at.isoformat(),
        "expiresAt": entry.expires_at.isoformat() if entry.expires_at else None,
        "metadata": entry.metadata,
    }
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _entry_from_json(raw: str) -> SecureStoreEntry:
    try:
        data = json.loads(raw)
        expires = data.get("expiresAt")
        return SecureStoreEntry(
            id=data["id"],
            created_at=datetime.fromisoformat(data["createdAt"]),
            expires_at=datetime.fromisoformat(expires) if expires else None,
            metadata=data.get("metadata") or {},
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise SecureStoreError(f"Corrupt entry metadata: {e!r}") from e


def _write_atomic(path: Path, content: bytes) -> None:
    """Write via temp file + rename so readers never see a partial file."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".part")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
