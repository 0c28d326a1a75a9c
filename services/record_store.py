"""
Record store used by the ledger, the overlay state machine and both sessions.

`RecordStore` is the narrow query surface the core depends on: equality
filters, ordering, limits, a compare-and-set decrement and bulk delete. Every
write is reported to the `SyncChannel` so subscribed sessions can refresh.
`MongoRecordStore` implements it on motor.
"""
import abc
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from services.errors import StoreError
from services.sync_channel import ChangeEvent, SyncChannel

logger = logging.getLogger(__name__)

BOARDS = "boards"
PRIZES = "prizes"
DRAW_EVENTS = "draw_events"
OVERLAY_STATES = "overlay_states"
PROFILES = "profiles"
RECONCILIATION_FLAGS = "reconciliation_flags"

SortSpec = Sequence[Tuple[str, int]]


def new_id() -> str:
    return str(ObjectId())


class StoreSession:
    """Write context handed out by `RecordStore.transaction()`.

    When `handle` is set the writes belong to one store transaction and their
    change notifications are held back until it commits.
    """

    def __init__(self, handle: Any = None):
        self.handle = handle
        self.pending: List[ChangeEvent] = []

    @property
    def transactional(self) -> bool:
        return self.handle is not None


class RecordStore(abc.ABC):
    def __init__(self, channel: SyncChannel):
        self.channel = channel

    @abc.abstractmethod
    async def find_one(self, table: str, filter: Dict[str, Any],
                       session: Optional[StoreSession] = None) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    async def find(self, table: str, filter: Dict[str, Any], sort: Optional[SortSpec] = None,
                   limit: Optional[int] = None,
                   session: Optional[StoreSession] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abc.abstractmethod
    async def count(self, table: str, filter: Dict[str, Any],
                    session: Optional[StoreSession] = None) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def insert_one(self, table: str, doc: Dict[str, Any],
                         session: Optional[StoreSession] = None) -> Dict[str, Any]:
        """Insert and return the stored document (with `_id`)"""
        raise NotImplementedError

    @abc.abstractmethod
    async def update_one(self, table: str, filter: Dict[str, Any], changes: Dict[str, Any],
                         session: Optional[StoreSession] = None) -> Optional[Dict[str, Any]]:
        """Apply `changes` to the first match and return it, or None when nothing matched"""
        raise NotImplementedError

    @abc.abstractmethod
    async def decrement_if_positive(self, table: str, filter: Dict[str, Any], field: str,
                                    session: Optional[StoreSession] = None) -> Optional[Dict[str, Any]]:
        """Compare-and-set decrement of `field` by one, only while it is above zero.

        Returns the updated document, or None when no document matched or the
        field had already reached zero.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_many(self, table: str, filter: Dict[str, Any],
                          session: Optional[StoreSession] = None) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def transaction(self) -> "AsyncIterator[StoreSession]":
        raise NotImplementedError

    def _notify(self, table: str, operation: str, record: Dict[str, Any],
                session: Optional[StoreSession]) -> None:
        event = ChangeEvent(table=table, operation=operation, record=dict(record))
        if session is not None and session.transactional:
            session.pending.append(event)
        else:
            self.channel.publish(event)


class MongoRecordStore(RecordStore):
    def __init__(self, client, database, channel: SyncChannel,
                 use_transactions: bool = False, publish_local: bool = True):
        super().__init__(channel)
        self.client = client
        self.database = database
        self.use_transactions = use_transactions
        # With change streams on, the relay publishes every write instead
        self.publish_local = publish_local

    def _collection(self, table: str):
        return self.database[table]

    @staticmethod
    def _motor_session(session: Optional[StoreSession]):
        return session.handle if session is not None else None

    def _notify(self, table, operation, record, session):
        if self.publish_local:
            super()._notify(table, operation, record, session)

    async def find_one(self, table, filter, session=None):
        try:
            return await self._collection(table).find_one(filter, session=self._motor_session(session))
        except PyMongoError as e:
            raise StoreError(f"Failed to read {table}: {e}") from e

    async def find(self, table, filter, sort=None, limit=None, session=None):
        try:
            cursor = self._collection(table).find(filter, session=self._motor_session(session))
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(limit)
        except PyMongoError as e:
            raise StoreError(f"Failed to read {table}: {e}") from e

    async def count(self, table, filter, session=None):
        try:
            return await self._collection(table).count_documents(filter, session=self._motor_session(session))
        except PyMongoError as e:
            raise StoreError(f"Failed to count {table}: {e}") from e

    async def insert_one(self, table, doc, session=None):
        doc = dict(doc)
        doc.setdefault("_id", new_id())
        try:
            await self._collection(table).insert_one(doc, session=self._motor_session(session))
        except PyMongoError as e:
            raise StoreError(f"Failed to insert into {table}: {e}") from e
        self._notify(table, "insert", doc, session)
        return doc

    async def update_one(self, table, filter, changes, session=None):
        try:
            updated = await self._collection(table).find_one_and_update(
                filter,
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
                session=self._motor_session(session),
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to update {table}: {e}") from e
        if updated is not None:
            self._notify(table, "update", updated, session)
        return updated

    async def decrement_if_positive(self, table, filter, field, session=None):
        try:
            updated = await self._collection(table).find_one_and_update(
                {**filter, field: {"$gt": 0}},
                {"$inc": {field: -1}},
                return_document=ReturnDocument.AFTER,
                session=self._motor_session(session),
            )
        except PyMongoError as e:
            raise StoreError(f"Failed to decrement {table}.{field}: {e}") from e
        if updated is not None:
            self._notify(table, "update", updated, session)
        return updated

    async def delete_many(self, table, filter, session=None):
        try:
            result = await self._collection(table).delete_many(filter, session=self._motor_session(session))
        except PyMongoError as e:
            raise StoreError(f"Failed to delete from {table}: {e}") from e
        if result.deleted_count:
            self._notify(table, "delete", filter, session)
        return result.deleted_count

    @asynccontextmanager
    async def transaction(self):
        if not self.use_transactions:
            yield StoreSession()
            return

        try:
            async with await self.client.start_session() as motor_session:
                async with motor_session.start_transaction():
                    store_session = StoreSession(motor_session)
                    yield store_session
        except PyMongoError as e:
            raise StoreError(f"Transaction failed: {e}") from e

        if self.publish_local:
            self.channel.publish_many(store_session.pending)
