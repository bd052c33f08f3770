"""
Freshness evaluation for cached GraphQL responses.
"""

import time
from enum import Enum
from typing import Optional

from .store import CacheEntry


class Freshness(Enum):
    """Outcome of a freshness check."""
    HIT = "HIT"
    EXPIRED = "EXPIRED"


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def age_seconds(entry: CacheEntry, now: Optional[int] = None) -> int:
    """Whole seconds elapsed since the entry was stored."""
    if now is None:
        now = now_ms()
    return (now - entry.stored_at_ms) // 1000


def entry_ttl(entry: CacheEntry, effective_ttl: int) -> int:
    """TTL recorded on the entry, or the requester's TTL when none was recorded."""
    if entry.ttl_seconds and entry.ttl_seconds > 0:
        return entry.ttl_seconds
    return effective_ttl


def evaluate(entry: CacheEntry, effective_ttl: int, now: Optional[int] = None) -> Freshness:
    """Judge a stored entry; EXPIRED means the caller must refetch."""
    if age_seconds(entry, now) > entry_ttl(entry, effective_ttl):
        return Freshness.EXPIRED
    return Freshness.HIT
