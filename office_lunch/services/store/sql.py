"""
SQL Store Implementation

Production implementation of the synchronized store on top of SQLAlchemy
(async). Used when ENV_MODE=production or ENV_MODE=staging.

Tables:
    lunch_users   one row per user, balance as an integer column
    lunch_orders  one row per order
    lunch_menus   one JSON document per menu key

Atomic increment is a single `UPDATE ... SET balance = balance + :delta`
statement, so concurrent orders from different users never lose an update.

Change notifications:
    Without a change feed, subscribers in this process get a fresh snapshot
    after each committed write. With STORE_CHANGE_FEED enabled, writes are
    announced on a Redis channel and every process (the writer included)
    re-reads and delivers snapshots from its listener task.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import delete as sa_delete
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from office_lunch.core.exceptions import StoreError
from office_lunch.database import create_engine_and_sessionmaker, init_db
from office_lunch.models import MenuRecord, OrderRecord, UserRecord
from office_lunch.services.store.base import BaseStore, Collection, Snapshot

logger = logging.getLogger(__name__)

CHANGE_CHANNEL = "office_lunch:changes"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlStore(BaseStore):
    """
    SQLAlchemy-backed store.

    Example:
        >>> store = SqlStore("sqlite+aiosqlite:///lunch.db")
        >>> await store.start()
        >>> await store.put(Collection.USERS, "alice", {"name": "alice", "balance": 0})
    """

    MODELS = {
        Collection.USERS: UserRecord,
        Collection.ORDERS: OrderRecord,
        Collection.MENUS: MenuRecord,
    }

    def __init__(
        self,
        database_url: str,
        redis_url: Optional[str] = None,
        change_feed: bool = False,
        echo: bool = False,
        clock=None,
    ):
        super().__init__(clock=clock)
        self._engine, self._session_maker = create_engine_and_sessionmaker(
            database_url, echo=echo
        )
        self._redis_url = redis_url
        self._change_feed = change_feed and bool(redis_url)
        self._redis: Optional[aioredis.Redis] = None
        self._listener: Optional[asyncio.Task] = None

        logger.info(
            f"SqlStore initialized (change_feed={'redis' if self._change_feed else 'local'})"
        )

    @property
    def provider_name(self) -> str:
        return "sql"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        try:
            await init_db(self._engine)
        except SQLAlchemyError as e:
            logger.error(f"SQL: could not create tables - {e}")
            raise StoreError(f"store initialization failed: {e}") from e

        if self._change_feed:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            pubsub = self._redis.pubsub()
            await pubsub.subscribe(CHANGE_CHANNEL)
            self._listener = asyncio.create_task(self._listen(pubsub))
            logger.info(f"SQL: listening for changes on {CHANGE_CHANNEL}")

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await self._engine.dispose()

    async def _listen(self, pubsub) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    collection = Collection(message["data"])
                except ValueError:
                    logger.warning(f"SQL: ignoring change for unknown collection {message['data']!r}")
                    continue
                await BaseStore._publish(self, collection)
        finally:
            await pubsub.aclose()

    async def _publish(self, collection: Collection) -> None:
        if self._redis is None:
            await super()._publish(collection)
            return
        try:
            await self._redis.publish(CHANGE_CHANNEL, collection.value)
        except RedisError as e:
            # The write is committed; at least keep local observers current
            logger.error(f"SQL: change feed publish failed for {collection.value} - {e}")
            await super()._publish(collection)

    # ------------------------------------------------------------------
    # Row <-> document mapping
    # ------------------------------------------------------------------

    def _to_doc(self, collection: Collection, row: Any) -> dict[str, Any]:
        if collection == Collection.MENUS:
            return {**(row.data or {}), "id": row.key}

        doc: dict[str, Any] = {}
        for field, column in row.FIELDS.items():
            value = getattr(row, column)
            doc[field] = _aware(value) if isinstance(value, datetime) else value
        doc["id"] = row.name if collection == Collection.USERS else row.id
        return doc

    @staticmethod
    def _to_columns(model: Any, data: dict[str, Any]) -> dict[str, Any]:
        columns = {}
        for field, value in data.items():
            column = model.FIELDS.get(field)
            if column is None:
                logger.debug(f"SQL: dropping unmapped field {field!r} for {model.__tablename__}")
                continue
            columns[column] = value
        return columns

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    async def get(self, collection: Collection, key: str) -> Optional[dict[str, Any]]:
        model = self.MODELS[collection]
        try:
            async with self._session_maker() as session:
                row = await session.get(model, key)
                return self._to_doc(collection, row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"SQL: read {collection.value}/{key} failed - {e}")
            raise StoreError(f"could not read {collection.value}/{key}") from e

    async def put(
        self,
        collection: Collection,
        key: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        model = self.MODELS[collection]
        fields = self._resolve_timestamps(data)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    row = await session.get(model, key)
                    if collection == Collection.MENUS:
                        if row is None:
                            session.add(MenuRecord(key=key, data=fields))
                        elif merge:
                            # Reassign so the JSON column is flagged dirty
                            row.data = {**(row.data or {}), **fields}
                        else:
                            row.data = fields
                    else:
                        columns = self._to_columns(model, fields)
                        if row is None:
                            pk = "name" if collection == Collection.USERS else "id"
                            columns[pk] = key
                            session.add(model(**columns))
                        else:
                            for column, value in columns.items():
                                setattr(row, column, value)
        except SQLAlchemyError as e:
            logger.error(f"SQL: write {collection.value}/{key} failed - {e}")
            raise StoreError(f"could not write {collection.value}/{key}") from e

        await self._publish(collection)

    async def delete(self, collection: Collection, key: str) -> None:
        model = self.MODELS[collection]
        pk = {
            Collection.USERS: UserRecord.name,
            Collection.ORDERS: OrderRecord.id,
            Collection.MENUS: MenuRecord.key,
        }[collection]
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(sa_delete(model).where(pk == key))
        except SQLAlchemyError as e:
            logger.error(f"SQL: delete {collection.value}/{key} failed - {e}")
            raise StoreError(f"could not delete {collection.value}/{key}") from e

        await self._publish(collection)

    async def increment(
        self,
        collection: Collection,
        key: str,
        field: str,
        delta: int,
    ) -> None:
        if collection != Collection.USERS or field != "balance":
            raise StoreError(f"atomic increment is not supported on {collection.value}.{field}")

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        update(UserRecord)
                        .where(UserRecord.name == key)
                        .values(balance=UserRecord.balance + delta)
                    )
        except SQLAlchemyError as e:
            logger.error(f"SQL: increment {collection.value}/{key} failed - {e}")
            raise StoreError(f"could not update balance of {key}") from e

        if result.rowcount == 0:
            raise StoreError(f"{collection.value}/{key} does not exist")

        await self._publish(collection)

    async def _snapshot(self, collection: Collection) -> Snapshot:
        model = self.MODELS[collection]
        query = select(model)
        if collection == Collection.ORDERS:
            query = query.order_by(OrderRecord.created_at.desc())
        try:
            async with self._session_maker() as session:
                rows = (await session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"SQL: list {collection.value} failed - {e}")
            raise StoreError(f"could not list {collection.value}") from e
        return [self._to_doc(collection, row) for row in rows]

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(1))
            if self._redis is not None:
                await self._redis.ping()
            return True
        except (SQLAlchemyError, RedisError) as e:
            logger.error(f"SQL: health check failed - {e}")
            return False
