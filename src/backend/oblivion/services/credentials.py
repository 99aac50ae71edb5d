"""
Credential Store — per-provider API keys encrypted under a passphrase.

Envelope:
  key  = PBKDF2-HMAC-SHA256(passphrase, salt[16], 120k iterations) → 256 bits
  blob = AES-GCM(key, iv[12], secret, associated_data=provider_id)

The provider id is bound as associated data, so a blob copied under another
provider's name fails to decrypt. Blobs are persisted as one JSON document
(atomic replace); with no path the store lives in memory only.

Decrypted keys are returned to the caller and never kept here. Passphrase
acquisition stays outside: `secret_source()` takes a callback.
"""
from __future__ import annotations

import base64
import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from oblivion.config import settings
from oblivion.errors import CredentialNotFound, DecryptionError
from oblivion.models.schemas import EncryptedBlob
from oblivion.providers.base import SecretSource

logger = logging.getLogger(__name__)

SALT_BYTES = 16
IV_BYTES = 12
KEY_BYTES = 32

PassphraseSource = Callable[[], str]


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"))


def derive_key(passphrase: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_BYTES, salt=salt, iterations=iterations)
    return kdf.derive(passphrase.encode("utf-8"))


class CredentialStore:
    """
    Usage:
        store = CredentialStore(Path("data/credentials.json"))
        store.save("openai", "sk-...", passphrase)
        key = store.load("openai", passphrase)
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, iterations: Optional[int] = None):
        self.path = Path(path) if path else None
        self.iterations = iterations if iterations is not None else settings.credential_kdf_iterations
        self._blobs: Dict[str, EncryptedBlob] = {}
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            self._read()

    def save(self, provider_id: str, secret: str, passphrase: str) -> EncryptedBlob:
        """Encrypt and persist a provider's key, replacing any previous one."""
        salt = os.urandom(SALT_BYTES)
        iv = os.urandom(IV_BYTES)
        key = derive_key(passphrase, salt, self.iterations)
        ciphertext = AESGCM(key).encrypt(iv, secret.encode("utf-8"), provider_id.encode("utf-8"))

        blob = EncryptedBlob(
            provider_id=provider_id,
            ciphertext=_b64(ciphertext),
            salt=_b64(salt),
            iv=_b64(iv),
            kdf_iterations=self.iterations,
        )
        with self._lock:
            self._blobs[provider_id] = blob
            self._write()
        logger.info(f"Credential for {provider_id} saved (encrypted)")
        return blob

    def load(self, provider_id: str, passphrase: str) -> str:
        """
        Decrypt a provider's key.

        Raises:
            CredentialNotFound: nothing stored for this provider
            DecryptionError: wrong passphrase or tampered blob
        """
        with self._lock:
            blob = self._blobs.get(provider_id)
        if blob is None:
            raise CredentialNotFound(provider_id)

        try:
            key = derive_key(passphrase, _unb64(blob.salt), blob.kdf_iterations)
            plain = AESGCM(key).decrypt(
                _unb64(blob.iv), _unb64(blob.ciphertext), provider_id.encode("utf-8")
            )
        except (InvalidTag, ValueError) as e:
            logger.warning(f"Credential for {provider_id} could not be decrypted")
            raise DecryptionError(f"Could not decrypt credential for {provider_id}") from e
        return plain.decode("utf-8")

    def delete(self, provider_id: str) -> None:
        with self._lock:
            if self._blobs.pop(provider_id, None) is None:
                raise CredentialNotFound(provider_id)
            self._write()
        logger.info(f"Credential for {provider_id} deleted")

    def has(self, provider_id: str) -> bool:
        with self._lock:
            return provider_id in self._blobs

    def blob(self, provider_id: str) -> EncryptedBlob:
        with self._lock:
            blob = self._blobs.get(provider_id)
        if blob is None:
            raise CredentialNotFound(provider_id)
        return blob

    def list_providers(self) -> List[str]:
        with self._lock:
            return sorted(self._blobs)

    def secret_source(self, provider_id: str, passphrase_source: PassphraseSource) -> SecretSource:
        """A callable that decrypts the stored key afresh on every call."""
        return lambda: self.load(provider_id, passphrase_source())

    # ── Persistence ──

    def _read(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read credential store {self.path}: {e}")
            raise
        self._blobs = {pid: EncryptedBlob.model_validate(raw) for pid, raw in data.items()}
        logger.info(f"Loaded {len(self._blobs)} stored credentials from {self.path}")

    def _write(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {pid: blob.model_dump(mode="json") for pid, blob in self._blobs.items()}
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
