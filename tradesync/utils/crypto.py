from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac


def hmac_sha256(key: str, message: bytes) -> bytes:
    h = hmac.HMAC(key.encode("utf-8"), hashes.SHA256())
    h.update(message)
    return h.finalize()


def hmac_sha256_hex(key: str, message: bytes) -> str:
    return hmac_sha256(key, message).hex()


def verify_hmac_sha256(key: str, message: bytes, tag: bytes) -> bool:
    h = hmac.HMAC(key.encode("utf-8"), hashes.SHA256())
    h.update(message)
    try:
        h.verify(tag)
        return True
    except InvalidSignature:
        return False


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """Decode unpadded base64url. Raises ValueError on bad input."""
    s = text.strip()
    pad = "=" * (-len(s) % 4)
    try:
        return base64.urlsafe_b64decode((s + pad).encode("ascii"))
    except (UnicodeEncodeError, binascii.Error) as e:
        raise ValueError("invalid base64url") from e
