# Off-chain metadata: local and remote backends behind one fallback policy.

from .backends import LocalBackend, LocalStoreError, RemoteBackend, RemoteStoreError
from .offchain import (
    CATEGORIES,
    CHAT,
    NOTIFICATIONS,
    PROFILES,
    RECEIPTS,
    OffchainStore,
    receipt_key,
    store_key,
    thread_key,
)

__all__ = [
    "CATEGORIES",
    "CHAT",
    "LocalBackend",
    "LocalStoreError",
    "NOTIFICATIONS",
    "OffchainStore",
    "PROFILES",
    "RECEIPTS",
    "RemoteBackend",
    "RemoteStoreError",
    "receipt_key",
    "store_key",
    "thread_key",
]
