"""
Pytest configuration for the draw board services.

Provides:
- An in-memory RecordStore with optional transactions and failure injection
- A board fixture factory (board, prizes and overlay state seeded directly)
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
import pytz

from models.prize import BLANK_TIER
from services.errors import StoreError
from services.record_store import (
    BOARDS,
    OVERLAY_STATES,
    PRIZES,
    PROFILES,
    RecordStore,
    StoreSession,
    new_id,
)
from services.sync_channel import SyncChannel

SELLER_ID = "seller-1"
OVERLAY_TOKEN = "overlay-secret-token"


def _matches(doc: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in filter.items())


def _sort_key(value):
    # None sorts first, like MongoDB
    return (value is not None, value)


class InMemoryRecordStore(RecordStore):
    """RecordStore backed by dicts.

    With `transactional=True` every transaction snapshots the tables and
    restores them when the block raises. `fail(method, table)` makes every later
    call of that method on that table raise StoreError.
    """

    def __init__(self, channel: Optional[SyncChannel] = None, transactional: bool = False):
        super().__init__(channel or SyncChannel())
        self.transactional = transactional
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.failures: Set[Tuple[str, str]] = set()

    # Test helpers

    def fail(self, method: str, table: str) -> None:
        self.failures.add((method, table))

    def seed(self, table: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Insert without notifying subscribers; usable outside an event loop"""
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", new_id())
        self.tables.setdefault(table, {})[doc["_id"]] = doc
        return copy.deepcopy(doc)

    def rows(self, table: str, **filter) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self.tables.get(table, {}).values() if _matches(doc, filter)]

    def _check(self, method: str, table: str) -> None:
        if (method, table) in self.failures:
            raise StoreError(f"Injected {method} failure on {table}")

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(table, {})

    # RecordStore

    async def find_one(self, table, filter, session=None):
        self._check("find_one", table)
        for doc in self._table(table).values():
            if _matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def find(self, table, filter, sort=None, limit=None, session=None):
        self._check("find", table)
        docs = [copy.deepcopy(doc) for doc in self._table(table).values() if _matches(doc, filter)]
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=lambda doc: _sort_key(doc.get(field)), reverse=direction < 0)
        if limit:
            docs = docs[:limit]
        return docs

    async def count(self, table, filter, session=None):
        self._check("count", table)
        return sum(1 for doc in self._table(table).values() if _matches(doc, filter))

    async def insert_one(self, table, doc, session=None):
        self._check("insert_one", table)
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", new_id())
        if doc["_id"] in self._table(table):
            raise StoreError(f"Duplicate key {doc['_id']} in {table}")
        self._table(table)[doc["_id"]] = doc
        self._notify(table, "insert", doc, session)
        return copy.deepcopy(doc)

    async def update_one(self, table, filter, changes, session=None):
        self._check("update_one", table)
        for doc in self._table(table).values():
            if _matches(doc, filter):
                doc.update(copy.deepcopy(changes))
                self._notify(table, "update", doc, session)
                return copy.deepcopy(doc)
        return None

    async def decrement_if_positive(self, table, filter, field, session=None):
        self._check("decrement_if_positive", table)
        for doc in self._table(table).values():
            if _matches(doc, filter) and doc.get(field, 0) > 0:
                doc[field] -= 1
                self._notify(table, "update", doc, session)
                return copy.deepcopy(doc)
        return None

    async def delete_many(self, table, filter, session=None):
        self._check("delete_many", table)
        rows = self._table(table)
        doomed = [key for key, doc in rows.items() if _matches(doc, filter)]
        for key in doomed:
            del rows[key]
        if doomed:
            self._notify(table, "delete", filter, session)
        return len(doomed)

    @asynccontextmanager
    async def transaction(self):
        if not self.transactional:
            yield StoreSession()
            return

        snapshot = copy.deepcopy(self.tables)
        session = StoreSession(handle=object())
        try:
            yield session
        except BaseException:
            self.tables = snapshot
            raise
        self.channel.publish_many(session.pending)


def make_board(store: InMemoryRecordStore, prizes: List[Tuple[str, int]], blanks: int = 0,
               seller_id: str = SELLER_ID, title: str = "Friday kuji",
               status: str = "live", overlay: bool = True) -> Dict[str, Any]:
    """Seed a board with `(tier, quantity)` prizes and optional blank draws.

    Returns a dict with the board doc, the prize docs in sort order and the
    overlay state doc.
    """
    created = datetime(2024, 5, 1, 12, 0, tzinfo=pytz.UTC)
    board = store.seed(BOARDS, {
        "seller_id": seller_id,
        "title": title,
        "description": None,
        "status": status,
        "mode": "manual",
        "public_slug": None,
        "overlay_token": OVERLAY_TOKEN,
        "sound_enabled": True,
        "theme": {},
        "created_at": created,
        "updated_at": created,
    })

    tiers = list(prizes)
    if blanks:
        tiers.append((BLANK_TIER, blanks))

    prize_docs = []
    for index, (tier, quantity) in enumerate(tiers):
        prize_docs.append(store.seed(PRIZES, {
            "board_id": board["_id"],
            "tier": tier,
            "name": f"{tier} prize" if tier != BLANK_TIER else BLANK_TIER,
            "description": None,
            "qty_total": quantity,
            "qty_left": quantity,
            "images": [],
            "sort_order": index,
            "created_at": created + timedelta(seconds=index),
        }))

    overlay_doc = None
    if overlay:
        overlay_doc = store.seed(OVERLAY_STATES, {
            "_id": board["_id"],
            "board_id": board["_id"],
            "is_modal_open": False,
            "focused_prize_id": None,
            "show_last_result": False,
            "connection_status": "idle",
            "updated_at": created,
        })

    return {"board": board, "prizes": prize_docs, "overlay": overlay_doc}


@pytest.fixture
def channel() -> SyncChannel:
    return SyncChannel()


@pytest.fixture
def store(channel: SyncChannel) -> InMemoryRecordStore:
    return InMemoryRecordStore(channel)


@pytest.fixture
def tx_store(channel: SyncChannel) -> InMemoryRecordStore:
    return InMemoryRecordStore(channel, transactional=True)


@pytest.fixture
def seller(store: InMemoryRecordStore) -> Dict[str, Any]:
    return store.seed(PROFILES, {
        "_id": SELLER_ID,
        "display_name": "Stream Seller",
        "email": "seller@example.com",
        "password": "not-a-real-hash",
        "role": "seller",
        "seller_handle": "streamseller",
        "avatar_url": None,
        "created_at": datetime(2024, 5, 1, tzinfo=pytz.UTC),
    })


@pytest.fixture
def board_factory(store: InMemoryRecordStore):
    def factory(prizes: List[Tuple[str, int]], **kwargs) -> Dict[str, Any]:
        return make_board(store, prizes, **kwargs)

    return factory


@pytest.fixture
def tx_board_factory(tx_store: InMemoryRecordStore):
    def factory(prizes: List[Tuple[str, int]], **kwargs) -> Dict[str, Any]:
        return make_board(tx_store, prizes, **kwargs)

    return factory
