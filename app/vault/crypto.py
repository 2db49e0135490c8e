"""
AES-256-GCM envelope encryption for vaulted card data.

Key material is the SHA-256 digest of a master secret.  Each envelope carries
its own random 96-bit nonce and the 128-bit GCM tag separately from the
ciphertext.  Optional additional authenticated data (AAD) binds an envelope to
the token record that owns it, so an envelope copied onto another record fails
verification.

Decryption is fail-closed: any tag mismatch, malformed field or wrong AAD
raises DecryptionError before a single plaintext byte is interpreted.
"""

import base64
import binascii
import hashlib
import hmac
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.errors import DecryptionError, ValidationError
from app.models.vault import EncryptedCardEnvelope

IV_LENGTH = 12
TAG_LENGTH = 16
ENVELOPE_VERSION = 1

_CREDENTIALS_PREFIX = "v1:"


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(data + padding)
    except (binascii.Error, ValueError) as err:
        raise DecryptionError(f"Invalid base64url field: {err}") from err


def derive_key(secret: str) -> bytes:
    """One-way derivation of a 256-bit key from the master secret."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def build_aad(token_id: str, session_id: str | None = None) -> str:
    return f"session:{session_id or 'none'}|token:{token_id}"


class EnvelopeCipher:
    def __init__(self, master_secret: str, key_id: str | None = None):
        if not master_secret:
            raise ValidationError("VAULT_MASTER_KEY is not set")
        self._aead = AESGCM(derive_key(master_secret))
        # Separate key so fingerprints reveal nothing about the encryption key
        self._fingerprint_key = hashlib.sha256(b"fingerprint:" + master_secret.encode("utf-8")).digest()
        self.key_id = key_id

    def encrypt(self, plaintext: str, aad: str | None = None) -> EncryptedCardEnvelope:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), aad.encode("utf-8") if aad else None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedCardEnvelope(
            version=ENVELOPE_VERSION,
            iv=b64url_encode(iv),
            ciphertext=b64url_encode(ciphertext),
            auth_tag=b64url_encode(tag),
            key_id=self.key_id,
        )

    def decrypt(self, envelope: EncryptedCardEnvelope, aad: str | None = None) -> str:
        if envelope.version != ENVELOPE_VERSION:
            raise DecryptionError(f"Unsupported envelope version: {envelope.version}")

        iv = b64url_decode(envelope.iv)
        ciphertext = b64url_decode(envelope.ciphertext)
        tag = b64url_decode(envelope.auth_tag)
        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Malformed envelope: bad nonce or tag length")

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, aad.encode("utf-8") if aad else None)
        except InvalidTag as err:
            raise DecryptionError("Authentication tag verification failed") from err
        return plaintext.decode("utf-8")

    def encrypt_json(self, payload: dict, aad: str | None = None) -> EncryptedCardEnvelope:
        return self.encrypt(json.dumps(payload, separators=(",", ":")), aad)

    def decrypt_json(self, envelope: EncryptedCardEnvelope, aad: str | None = None) -> dict:
        return json.loads(self.decrypt(envelope, aad))

    def fingerprint(self, pan: str) -> str:
        """Stable keyed digest of a PAN, used to dedup tokens of the same card."""
        digits = "".join(ch for ch in pan if ch.isdigit())
        return hmac.new(self._fingerprint_key, digits.encode("ascii"), hashlib.sha256).hexdigest()[:32]


# ---------------------------------------------------------------------------
# Compact format for PSP credentials stored in the config store
#   v1:<iv b64>:<ciphertext b64>:<tag b64>
# Plain JSON (no prefix) is accepted for rows written before encryption.
# ---------------------------------------------------------------------------

def encrypt_credentials(payload: dict, secret: str) -> str:
    if not secret:
        raise ValidationError("CREDENTIALS_ENCRYPTION_KEY is not set")
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(iv, json.dumps(payload).encode("utf-8"), None)
    parts = [
        _CREDENTIALS_PREFIX[:-1],
        base64.b64encode(iv).decode("ascii"),
        base64.b64encode(sealed[:-TAG_LENGTH]).decode("ascii"),
        base64.b64encode(sealed[-TAG_LENGTH:]).decode("ascii"),
    ]
    return ":".join(parts)


def decrypt_credentials(payload: str, secret: str | None) -> dict | None:
    if not payload:
        return None
    if not payload.startswith(_CREDENTIALS_PREFIX):
        return json.loads(payload)
    if not secret:
        raise ValidationError("CREDENTIALS_ENCRYPTION_KEY is not set")

    parts = payload.split(":")
    if len(parts) != 4:
        raise DecryptionError("Invalid encrypted credentials format")
    try:
        iv, ciphertext, tag = (base64.b64decode(p) for p in parts[1:])
    except (binascii.Error, ValueError) as err:
        raise DecryptionError(f"Invalid base64 field: {err}") from err
    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionError("Malformed credentials: bad nonce or tag length")

    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as err:
        raise DecryptionError("Credentials authentication tag verification failed") from err
    return json.loads(plaintext)
