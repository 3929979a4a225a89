"""feed-gate storage layer -- async SQLite keyed store and account records."""

from feed_gate.storage.database import KeyValueStore, get_store
from feed_gate.storage.models import Account

__all__ = [
    "Account",
    "KeyValueStore",
    "get_store",
]
