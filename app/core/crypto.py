"""AES-256-GCM encryption for the TOTP shared secrets stored on users."""

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings

logger = logging.getLogger(__name__)

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM


def _get_key() -> bytes:
    # configured value is free-form text, so stretch it to 32 bytes
    return hashlib.sha256(settings.two_factor_encryption_key.encode()).digest()


def encrypt_secret(secret: str) -> str:
    """Encrypt a secret. Returns base64(nonce + ciphertext)."""
    nonce = os.urandom(_NONCE_SIZE)
    ct = AESGCM(_get_key()).encrypt(nonce, secret.encode(), None)
    return base64.b64encode(nonce + ct).decode()


def decrypt_secret(token: str) -> str:
    """Decrypt a token produced by encrypt_secret.

    Returns an empty string when the token is malformed, was tampered with
    or was encrypted under another key; callers treat that as a corrupted setup.
    """
    try:
        raw = base64.b64decode(token, validate=True)
        if len(raw) <= _NONCE_SIZE:
            return ""
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        return AESGCM(_get_key()).decrypt(nonce, ct, None).decode()
    except (InvalidTag, binascii.Error, ValueError, UnicodeDecodeError):
        logger.warning("Could not decrypt a stored 2FA secret")
        return ""
