import base64
import binascii
import hashlib
import os
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.config import settings
from app.core.errors import DecryptError, MissingTokenError, SecretConfigError

BASE64_PREFIX = "base64:"
NONCE_SIZE = 12
KEY_SIZE = 32


def derive_key(secret: str) -> bytes:
    """
    "base64:<...>" secrets are decoded and must carry at least 32 bytes.
    Any other string is hashed with SHA-256.
    """
    secret = (secret or "").strip()
    if not secret:
        raise SecretConfigError("ESP_GRAMPS_SECRET is not configured")

    if secret.startswith(BASE64_PREFIX):
        try:
            raw = base64.b64decode(secret[len(BASE64_PREFIX):], validate=True)
        except (binascii.Error, ValueError):
            raise SecretConfigError("ESP_GRAMPS_SECRET is not valid base64")
        if len(raw) < KEY_SIZE:
            raise SecretConfigError("ESP_GRAMPS_SECRET must decode to at least 32 bytes")
        return raw[:KEY_SIZE]

    return hashlib.sha256(secret.encode("utf-8")).digest()


class SecretBox:
    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise SecretConfigError("secret key must be 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise MissingTokenError("token is empty")
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        ciphertext = (ciphertext or "").strip()
        if not ciphertext:
            raise MissingTokenError("stored token is empty")
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError):
            raise DecryptError("stored token is not valid base64")
        if len(raw) <= NONCE_SIZE:
            raise DecryptError("stored token is truncated")
        try:
            plain = self._aead.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        except InvalidTag:
            raise DecryptError("stored token failed authentication")
        return plain.decode("utf-8")


# --------------------------------------------------
# PROCESS-WIDE BOX
# --------------------------------------------------
_lock = threading.Lock()
_cached = {"secret": None, "box": None}


def get_secret_box() -> SecretBox:
    secret = settings.ESP_GRAMPS_SECRET
    with _lock:
        if _cached["box"] is None or _cached["secret"] != secret:
            _cached["box"] = SecretBox(derive_key(secret))
            _cached["secret"] = secret
        return _cached["box"]


def encrypt_token(plaintext: str) -> str:
    return get_secret_box().encrypt(plaintext)


def decrypt_token(ciphertext: str) -> str:
    return get_secret_box().decrypt(ciphertext)
