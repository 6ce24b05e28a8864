"""Credential gateway.

Encrypts and decrypts secrets at rest (platform auth keys, addon manifest
URLs and manifests) with AES-256-GCM. Each account has its own data
encryption key (DEK), derived from the server secret with HKDF-SHA256 and
the account id as salt. The account id is also bound as associated data, so
a ciphertext copied into another account's row fails to decrypt.

Ciphertexts are stored as ``base64(iv):base64(ciphertext):base64(tag)``.

Derived keys are cached in memory for a bounded time. Cache entries are
immutable tuples and a refresh replaces the whole entry under a lock, so a
concurrent reader sees either the old entry or the new one.
"""

import base64
import binascii
import hashlib
import json
import os
import threading
import time
from collections.abc import Callable
from typing import Any, NamedTuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .config import get_settings_instance
from .exceptions import CredentialError
from .logging import get_logger

logger = get_logger(__name__)

KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16
_HKDF_INFO = b"addonsync-account-dek-v1"


class _DekEntry(NamedTuple):
    key: bytes
    expires_at: float


class DekCache:
    """TTL cache of per-account data encryption keys."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _DekEntry] = {}
        self._lock = threading.Lock()

    def get(self, account_id: str) -> bytes | None:
        entry = self._entries.get(account_id)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            with self._lock:
                # Only drop the entry we observed; a refresh may have replaced it
                if self._entries.get(account_id) is entry:
                    del self._entries[account_id]
            return None
        return entry.key

    def put(self, account_id: str, key: bytes) -> None:
        entry = _DekEntry(key=key, expires_at=self._clock() + self._ttl)
        with self._lock:
            self._entries[account_id] = entry

    def discard(self, account_id: str) -> None:
        with self._lock:
            self._entries.pop(account_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _load_server_key(raw: str) -> bytes:
    """Interpret the configured secret as base64 key material or a passphrase."""
    try:
        decoded = base64.b64decode(raw, validate=True)
        if len(decoded) >= KEY_BYTES:
            return decoded[:KEY_BYTES]
    except (binascii.Error, ValueError):
        pass
    return hashlib.sha256(raw.encode("utf-8")).digest()


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class CredentialGateway:
    """Envelope encryption for account-scoped secrets."""

    def __init__(
        self,
        server_key: str | None = None,
        dek_ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings_instance()
        raw = server_key if server_key is not None else settings.encryption_key
        self._server_key = _load_server_key(raw) if raw else None
        ttl = dek_ttl_seconds if dek_ttl_seconds is not None else settings.dek_cache_ttl_seconds
        self._cache = DekCache(ttl, clock=clock)

    @property
    def dek_cache(self) -> DekCache:
        return self._cache

    def derive_account_dek(self, account_id: str) -> bytes:
        if self._server_key is None:
            raise CredentialError(
                "encryption key not configured",
                details={"account_id": account_id, "hint": "set ADDONSYNC_ENCRYPTION_KEY"},
            )
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=account_id.encode("utf-8"),
            info=_HKDF_INFO,
        )
        return hkdf.derive(self._server_key)

    def get_account_dek(self, account_id: str) -> bytes:
        key = self._cache.get(account_id)
        if key is None:
            key = self.derive_account_dek(account_id)
            self._cache.put(account_id, key)
        return key

    def set_account_dek(self, account_id: str, key: bytes) -> None:
        """Install an explicit DEK for an account (replaces any cached key)."""
        if len(key) != KEY_BYTES:
            raise CredentialError("data key must be 32 bytes", details={"account_id": account_id})
        self._cache.put(account_id, bytes(key))

    def clear_account_dek(self, account_id: str) -> None:
        self._cache.discard(account_id)

    def encrypt(self, account_id: str, plaintext: str) -> str:
        """Encrypt a secret for storage in an account-owned row.

        Args:
            account_id: Owning account; selects the DEK and is bound as AAD
            plaintext: The secret to protect

        Returns:
            The ``iv:ciphertext:tag`` envelope string

        Raises:
            CredentialError: If the secret is empty or no key is available

        """
        if plaintext is None or plaintext == "":
            raise CredentialError("cannot encrypt empty value", details={"account_id": account_id})
        key = self.get_account_dek(account_id)
        iv = os.urandom(IV_BYTES)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), account_id.encode("utf-8"))
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{_b64(iv)}:{_b64(ciphertext)}:{_b64(tag)}"

    def decrypt(self, account_id: str, envelope: str) -> str:
        """Decrypt an envelope produced by :meth:`encrypt` for the same account.

        Raises:
            CredentialError: On malformed input, wrong key, wrong account or tampering

        """
        if not envelope:
            raise CredentialError("cannot decrypt empty value", details={"account_id": account_id})
        parts = envelope.split(":")
        if len(parts) != 3:
            raise CredentialError("malformed ciphertext", details={"account_id": account_id})
        try:
            iv, ciphertext, tag = (base64.b64decode(p, validate=True) for p in parts)
        except (binascii.Error, ValueError) as e:
            raise CredentialError("malformed ciphertext", details={"account_id": account_id}) from e
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise CredentialError("malformed ciphertext", details={"account_id": account_id})

        key = self.get_account_dek(account_id)
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, account_id.encode("utf-8"))
        except InvalidTag as e:
            logger.warning("Credential decryption failed", extra={"account_id": account_id})
            raise CredentialError("decryption failed", details={"account_id": account_id}) from e
        return plaintext.decode("utf-8")

    def encrypt_json(self, account_id: str, value: Any) -> str:
        return self.encrypt(account_id, json.dumps(value, separators=(",", ":")))

    def decrypt_json(self, account_id: str, envelope: str) -> Any:
        text = self.decrypt(account_id, envelope)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise CredentialError("decrypted value is not JSON", details={"account_id": account_id}) from e


# Global credential gateway instance
_credential_gateway: CredentialGateway | None = None


def get_credential_gateway() -> CredentialGateway:
    """Get the global credential gateway instance."""
    global _credential_gateway  # noqa: PLW0603

    if _credential_gateway is None:
        _credential_gateway = CredentialGateway()

    return _credential_gateway


def reset_credential_gateway() -> None:
    """Drop the global instance (tests and key rotation)."""
    global _credential_gateway  # noqa: PLW0603
    _credential_gateway = None
