"""
Effective TTL resolution and cache key derivation.
"""

import re
from typing import Optional, Union

from shared.config import MIN_CACHE_TTL
from .digest import digest


TTL_PATTERN = re.compile(r"[+-]?[0-9]+", re.ASCII)


def resolve_effective_ttl(header_value: Optional[str], min_ttl: int = MIN_CACHE_TTL) -> int:
    """Resolve the X-Cache-TTL request header against the TTL floor.

    Missing or non-decimal values fall back to ``min_ttl``; smaller values
    are raised to it.
    """
    if header_value is None:
        return min_ttl
    value = header_value.strip()
    if not TTL_PATTERN.fullmatch(value):
        return min_ttl
    return max(int(value), min_ttl)


def derive_key(path: str, effective_ttl: int, body: Union[bytes, str]) -> str:
    """Build the cache key ``{path}/{ttl digest}/{body digest}``.

    The TTL digest keeps requesters with different TTL preferences from ever
    sharing an entry.
    """
    ttl_digest = digest(f"ttl-{effective_ttl}")
    body_digest = digest(body)
    return f"{path.rstrip('/')}/{ttl_digest}/{body_digest}"
