"""
Hex digests used for cache key derivation.
"""

import hashlib
from typing import Union


def digest(data: Union[bytes, str]) -> str:
    """Return the SHA-256 hex digest of ``data``; strings are UTF-8 encoded."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()
