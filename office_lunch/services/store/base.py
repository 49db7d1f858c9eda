"""
Synchronized Store Abstract Base Class

Defines the document-store contract the ledger engine relies on. Both
MemoryStore and SqlStore implement it, so the engine behaves identically
regardless of which store is active.

Model:
    - Named collections of JSON-like documents addressed by key
    - put() with optional merge, delete(), list()
    - increment(): atomic add on a numeric field (never read-modify-write)
    - subscribe(): full-snapshot change notifications per collection

Guarantees:
    - Notifications for one collection arrive in mutation order
    - Nothing is promised about ordering across collections
    - Every failure surfaces as StoreError
"""

import copy
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    """Logical collections used by the engine."""
    MENUS = "menus"
    USERS = "users"
    ORDERS = "orders"


MENU_KEY = "today"


class _ServerTimestamp:
    """Placeholder replaced by the store clock when a document is written."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    # Identity is the marker, so copies must stay the same object
    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo: dict) -> "_ServerTimestamp":
        return self


SERVER_TIMESTAMP = _ServerTimestamp()

Snapshot = list[dict[str, Any]]
SnapshotCallback = Callable[[Snapshot], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseStore(ABC):
    """
    Abstract base class for synchronized document stores.

    Example:
        >>> store = get_store()
        >>> await store.put(Collection.USERS, "alice", {"name": "alice", "balance": 0})
        >>> await store.increment(Collection.USERS, "alice", "balance", 120)
        >>> unsubscribe = await store.subscribe(Collection.USERS, print)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._subscribers: dict[Collection, list[SnapshotCallback]] = defaultdict(list)

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the store name (e.g., "memory", "sql")."""
        pass

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    @abstractmethod
    async def get(self, collection: Collection, key: str) -> Optional[dict[str, Any]]:
        """
        Read one document.

        Returns:
            The document (with its "id") or None if it does not exist
        """
        pass

    @abstractmethod
    async def put(
        self,
        collection: Collection,
        key: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """
        Write one document.

        Args:
            collection: Target collection
            key: Document key
            data: Fields to write; SERVER_TIMESTAMP values take the store clock
            merge: Update only the given top-level fields of an existing document
        """
        pass

    @abstractmethod
    async def delete(self, collection: Collection, key: str) -> None:
        """Delete one document. Deleting a missing document is a no-op."""
        pass

    @abstractmethod
    async def increment(
        self,
        collection: Collection,
        key: str,
        field: str,
        delta: int,
    ) -> None:
        """
        Atomically add delta to a numeric field.

        Raises:
            StoreError: If the document does not exist or the write fails
        """
        pass

    async def list(self, collection: Collection) -> Snapshot:
        """All documents of a collection (orders newest first)."""
        return await self._snapshot(collection)

    @abstractmethod
    async def _snapshot(self, collection: Collection) -> Snapshot:
        """Read the full current contents of a collection."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify the store is reachable.

        Returns:
            bool: True if operational
        """
        pass

    async def start(self) -> None:
        """Prepare connections; called once at application startup."""

    async def close(self) -> None:
        """Release connections; called at shutdown."""

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        collection: Collection,
        callback: SnapshotCallback,
    ) -> Callable[[], None]:
        """
        Register a snapshot callback and deliver the current snapshot.

        Returns:
            A function that removes the subscription
        """
        self._subscribers[collection].append(callback)
        self._deliver(collection, callback, await self._snapshot(collection))

        def unsubscribe() -> None:
            if callback in self._subscribers[collection]:
                self._subscribers[collection].remove(callback)

        return unsubscribe

    async def _publish(self, collection: Collection) -> None:
        """Push the latest snapshot of a collection to its subscribers."""
        callbacks = list(self._subscribers.get(collection, ()))
        if not callbacks:
            return
        snapshot = await self._snapshot(collection)
        for callback in callbacks:
            self._deliver(collection, callback, copy.deepcopy(snapshot))

    @staticmethod
    def _deliver(
        collection: Collection,
        callback: SnapshotCallback,
        snapshot: Snapshot,
    ) -> None:
        try:
            callback(snapshot)
        except Exception:
            # Observer errors never fail the write that triggered them
            logger.exception(f"Subscriber for {collection.value} raised")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_timestamps(self, data: dict[str, Any]) -> dict[str, Any]:
        now = self._clock()
        return {
            k: (now if v is SERVER_TIMESTAMP else v)
            for k, v in data.items()
        }

    @staticmethod
    def _sort_snapshot(collection: Collection, docs: Snapshot) -> Snapshot:
        if collection == Collection.ORDERS:
            epoch = datetime.min.replace(tzinfo=timezone.utc)
            return sorted(
                docs,
                key=lambda d: d.get("createdAt") or epoch,
                reverse=True,
            )
        return docs
