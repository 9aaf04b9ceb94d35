"""Encryption for secrets kept in the ``api_secrets`` table.

Values are sealed with AES-GCM under a key derived (HKDF-SHA256) from the
32-byte master key in ``MENTIONVAULT_MASTER_KEY``. The stored blob is
``base64url(nonce || ciphertext)``; the row name is bound in as AAD so a blob
cannot be moved to another row.
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

MASTER_KEY_ENV = "MENTIONVAULT_MASTER_KEY"
KEY_ID_ENV = "MENTIONVAULT_KEY_ID"

DEFAULT_KEY_ID = "v1"
HKDF_INFO = b"mentionvault:secrets:v1"
NONCE_BYTES = 12


@dataclass(frozen=True)
class SecretBox:
    key_id: str
    aesgcm: AESGCM

    def seal(self, plaintext: str, aad: bytes) -> str:
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self.aesgcm.encrypt(nonce, plaintext.encode("utf-8"), aad)
        return base64.urlsafe_b64encode(nonce + ciphertext).decode("utf-8")

    def open(self, blob_b64: str, aad: bytes) -> str:
        try:
            data = base64.urlsafe_b64decode(_pad_b64(blob_b64))
        except (binascii.Error, ValueError) as exc:
            raise ValueError("stored secret is not valid base64url") from exc
        try:
            plaintext = self.aesgcm.decrypt(data[:NONCE_BYTES], data[NONCE_BYTES:], aad)
        except InvalidTag as exc:
            raise ValueError("stored secret cannot be decrypted with the current master key") from exc
        return plaintext.decode("utf-8")


def generate_master_key() -> str:
    return base64.urlsafe_b64encode(os.urandom(32)).decode("utf-8").rstrip("=")


def load_secret_box() -> SecretBox:
    master_b64 = os.environ.get(MASTER_KEY_ENV, "").strip()
    if not master_b64:
        raise ValueError(f"Master key is not set. Set {MASTER_KEY_ENV}.")
    try:
        master = base64.urlsafe_b64decode(_pad_b64(master_b64))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"{MASTER_KEY_ENV} is not valid base64url") from exc
    if len(master) != 32:
        raise ValueError(f"{MASTER_KEY_ENV} must decode to 32 bytes")

    derived = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=HKDF_INFO).derive(master)
    return SecretBox(key_id=os.environ.get(KEY_ID_ENV) or DEFAULT_KEY_ID, aesgcm=AESGCM(derived))


def encrypt_secret(plaintext: str, aad: bytes) -> tuple[str, str]:
    box = load_secret_box()
    return box.key_id, box.seal(plaintext, aad)


def decrypt_secret(blob_b64: str, aad: bytes, key_id: str | None = None) -> str:
    box = load_secret_box()
    if key_id is not None and key_id != box.key_id:
        raise ValueError(f"secret was stored under key {key_id}, current key is {box.key_id}")
    return box.open(blob_b64, aad)


def _pad_b64(value: str) -> str:
    return value + "=" * (-len(value) % 4)
