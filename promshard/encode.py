"""Digest helpers."""

import hashlib


def md5_hex(data: bytes) -> str:
    """Return the lower-case hexadecimal MD5 digest of ``data``."""
    return hashlib.md5(data).hexdigest()