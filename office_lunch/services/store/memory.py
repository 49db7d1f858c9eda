"""
In-Memory Store Implementation

Process-local stand-in for the synchronized document store.
Used in development mode (ENV_MODE=development) and throughout the tests.

Behavior:
    - Documents live in plain dicts; reads and writes return deep copies
    - Optional simulated latency and random failure rate
    - fail_next() injects deterministic failures for a named operation,
      including "written but not acknowledged" failures
"""

import asyncio
import copy
import random
import logging
from collections import defaultdict
from typing import Any, Optional

from office_lunch.core.exceptions import StoreError
from office_lunch.services.store.base import BaseStore, Collection, Snapshot

logger = logging.getLogger(__name__)


class MemoryStore(BaseStore):
    """
    In-memory implementation of the store.

    Attributes:
        failure_rate: Probability of a simulated store failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> store = MemoryStore()
        >>> store.fail_next("increment")
        >>> await store.increment(Collection.USERS, "bob", "balance", 5)
        Traceback (most recent call last):
        StoreError: simulated increment failure
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        clock=None,
    ):
        super().__init__(clock=clock)
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self._docs: dict[Collection, dict[str, dict[str, Any]]] = defaultdict(dict)
        # operation -> queue of "applied" flags for upcoming injected failures
        self._injected: dict[str, list[bool]] = defaultdict(list)

        logger.info(
            f"MemoryStore initialized (failure_rate={failure_rate:.0%})"
        )

    @property
    def provider_name(self) -> str:
        return "memory"

    def fail_next(self, operation: str, applied: bool = False, times: int = 1) -> None:
        """
        Make the next call(s) to an operation fail.

        Args:
            operation: "get", "put", "delete", "increment" or "list"
            applied: Perform the write before failing (lost acknowledgement)
            times: Number of consecutive calls to fail
        """
        self._injected[operation].extend([applied] * times)

    async def _simulate_io(self, operation: str) -> Optional[bool]:
        """
        Apply latency and decide whether this call fails.

        Returns:
            None to proceed normally, or the "applied" flag of an injected failure
        """
        if self.max_latency:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))
        if self._injected[operation]:
            return self._injected[operation].pop(0)
        if self.failure_rate and random.random() < self.failure_rate:
            return False
        return None

    def _fail(self, operation: str) -> StoreError:
        logger.debug(f"Memory: simulated {operation} failure")
        return StoreError(f"simulated {operation} failure")

    async def get(self, collection: Collection, key: str) -> Optional[dict[str, Any]]:
        if await self._simulate_io("get") is not None:
            raise self._fail("get")
        doc = self._docs[collection].get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(
        self,
        collection: Collection,
        key: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        failure = await self._simulate_io("put")
        if failure is False:
            raise self._fail("put")

        fields = copy.deepcopy(self._resolve_timestamps(data))
        existing = self._docs[collection].get(key)
        if merge and existing is not None:
            existing.update(fields)
        else:
            self._docs[collection][key] = {**fields, "id": key}

        await self._publish(collection)
        if failure:
            raise self._fail("put")

    async def delete(self, collection: Collection, key: str) -> None:
        failure = await self._simulate_io("delete")
        if failure is False:
            raise self._fail("delete")

        self._docs[collection].pop(key, None)

        await self._publish(collection)
        if failure:
            raise self._fail("delete")

    async def increment(
        self,
        collection: Collection,
        key: str,
        field: str,
        delta: int,
    ) -> None:
        failure = await self._simulate_io("increment")
        if failure is False:
            raise self._fail("increment")

        doc = self._docs[collection].get(key)
        if doc is None:
            raise StoreError(f"{collection.value}/{key} does not exist")
        # No await between read and write: atomic under the event loop
        doc[field] = (doc.get(field) or 0) + delta

        await self._publish(collection)
        if failure:
            raise self._fail("increment")

    async def list(self, collection: Collection) -> Snapshot:
        if await self._simulate_io("list") is not None:
            raise self._fail("list")
        return await self._snapshot(collection)

    async def _snapshot(self, collection: Collection) -> Snapshot:
        docs = copy.deepcopy(list(self._docs[collection].values()))
        return self._sort_snapshot(collection, docs)

    async def health_check(self) -> bool:
        logger.debug("Memory: store health check passed")
        return True
