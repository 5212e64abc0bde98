from __future__ import annotations

import base64
import hashlib
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..settings import settings

_VERSION = "v1"


def _get_key() -> bytes:
    # Tokens only need to be opaque and tamper-evident; the JWT secret is the key source.
    raw = settings.jwt_secret or "mestory-dev-secret"
    return hashlib.sha256(str(raw).encode("utf-8")).digest()


def _b64(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii")


def encrypt_string(plain_text: Any) -> str | None:
    """Encrypt to `v1:iv:tag:ciphertext` (urlsafe base64 parts)."""
    if plain_text is None:
        return None

    iv = os.urandom(12)
    sealed = AESGCM(_get_key()).encrypt(iv, str(plain_text).encode("utf-8"), None)
    return ":".join([_VERSION, _b64(iv), _b64(sealed[-16:]), _b64(sealed[:-16])])


def decrypt_string(cipher_text: Any) -> str | None:
    if not cipher_text:
        return None

    parts = str(cipher_text).split(":")
    if len(parts) != 4 or parts[0] != _VERSION:
        return None

    try:
        iv, tag, data = (base64.urlsafe_b64decode(p) for p in parts[1:])
    except (ValueError, TypeError):
        return None
    if len(iv) != 12 or len(tag) != 16:
        return None

    try:
        return AESGCM(_get_key()).decrypt(iv, data + tag, None).decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        return None
