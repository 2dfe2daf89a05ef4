"""Flat key-value store on disk, one file per key, with optional compression and encryption."""

import base64
import hashlib
import logging
import os
import re
import zlib
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

_PBKDF2_SALT = b"fleetcache-v1"
_PBKDF2_ITERATIONS = 100_000

_FLAG_COMPRESSED = 0x01
_FLAG_ENCRYPTED = 0x02

_VALID_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageError(Exception):
    """Raised when a stored item cannot be written, read or decoded."""


class KeyValueStore(Protocol):
    """Synchronous string store used for cache persistence."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(
        self, key: str, value: str, *, compress: bool = False, encrypt: bool = False
    ) -> None: ...

    def remove_item(self, key: str) -> None: ...


def derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet-compatible key from a secret string via PBKDF2."""
    dk = hashlib.pbkdf2_hmac(
        "sha256", secret.encode(), _PBKDF2_SALT, _PBKDF2_ITERATIONS,
    )
    return base64.urlsafe_b64encode(dk)


class FileStore:
    """Store string values as files under *directory*.

    Each file starts with a one-byte header recording whether the payload
    is zlib-compressed and/or Fernet-encrypted, so ``get_item`` can decode
    it without being told how it was written.

    Args:
        directory: Directory holding one ``{key}.dat`` file per item.
        secret: Secret the encryption key is derived from. Required only
            for ``set_item(..., encrypt=True)`` and for reading encrypted items.
    """

    def __init__(self, directory: Path, secret: str | None = None) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._secure_path(self.directory)
        self._fernet = Fernet(derive_fernet_key(secret)) if secret else None

    def _path(self, key: str) -> Path:
        if not _VALID_KEY.match(key):
            raise StorageError(f"Invalid storage key {key!r}")
        return self.directory / f"{key}.dat"

    def _secure_path(self, path: Path) -> None:
        """Set restrictive permissions on a path.

        Directories get 0o700, files get 0o600.
        """
        try:
            if path.is_dir():
                os.chmod(path, 0o700)
            else:
                os.chmod(path, 0o600)
        except OSError:
            logger.debug("Could not set permissions on %s", path)

    def _require_fernet(self) -> Fernet:
        if self._fernet is None:
            raise StorageError("Encryption requested but no secret is configured")
        return self._fernet

    def set_item(
        self, key: str, value: str, *, compress: bool = False, encrypt: bool = False
    ) -> None:
        """Write *value* under *key*, replacing any previous item."""
        path = self._path(key)
        flags = 0
        payload = value.encode()
        if compress:
            payload = zlib.compress(payload)
            flags |= _FLAG_COMPRESSED
        if encrypt:
            payload = self._require_fernet().encrypt(payload)
            flags |= _FLAG_ENCRYPTED

        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(bytes([flags]) + payload)
        self._secure_path(tmp_path)
        os.replace(tmp_path, path)

    def get_item(self, key: str) -> str | None:
        """Return the decoded value stored under *key*, or ``None`` if missing.

        Raises:
            StorageError: If the item is truncated, cannot be decrypted or
                cannot be decompressed.
        """
        path = self._path(key)
        if not path.exists():
            return None
        raw = path.read_bytes()
        if not raw:
            raise StorageError(f"Stored item {key!r} is empty")

        flags, payload = raw[0], raw[1:]
        if flags & _FLAG_ENCRYPTED:
            try:
                payload = self._require_fernet().decrypt(payload)
            except InvalidToken as exc:
                raise StorageError(f"Failed to decrypt stored item {key!r}") from exc
        if flags & _FLAG_COMPRESSED:
            try:
                payload = zlib.decompress(payload)
            except zlib.error as exc:
                raise StorageError(f"Failed to decompress stored item {key!r}") from exc
        try:
            return payload.decode()
        except UnicodeDecodeError as exc:
            raise StorageError(f"Stored item {key!r} is not valid text") from exc

    def remove_item(self, key: str) -> None:
        """Delete the item stored under *key* if it exists."""
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        """Return the keys of all stored items."""
        return sorted(p.stem for p in self.directory.glob("*.dat"))
