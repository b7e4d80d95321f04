"""
Database Package

Durable key-value storage for the admission controller: the SQLAlchemy
model, the store implementations and the sliding-window rate limiter.
"""

from .models import Base, RateWindow
from .kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RateWindowRecord,
    SqlKeyValueStore,
)
from .rate_limiter import QuotaStatus, RateLimiter

__all__ = [
    "Base",
    "RateWindow",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqlKeyValueStore",
    "RateWindowRecord",
    "QuotaStatus",
    "RateLimiter",
]
