import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel

import config
from services.record_store import (
    BOARDS,
    DRAW_EVENTS,
    OVERLAY_STATES,
    PRIZES,
    PROFILES,
    RECONCILIATION_FLAGS,
    MongoRecordStore,
)
from services.sync_channel import SyncChannel

logger = logging.getLogger(__name__)

# MongoDB connection
client = AsyncIOMotorClient(config.MONGODB_URL)
database = client[config.DATABASE_NAME]

# Collections
profiles_collection = database[PROFILES]
boards_collection = database[BOARDS]
prizes_collection = database[PRIZES]
draw_events_collection = database[DRAW_EVENTS]
overlay_states_collection = database[OVERLAY_STATES]
reconciliation_flags_collection = database[RECONCILIATION_FLAGS]

sync_channel = SyncChannel()
record_store = MongoRecordStore(
    client,
    database,
    sync_channel,
    use_transactions=config.MONGODB_TRANSACTIONS,
    publish_local=not config.CHANGE_STREAMS_ENABLED,
)


async def init_db():
    """Initialize database with indexes"""

    await profiles_collection.create_indexes([
        IndexModel("email", unique=True),
    ])

    await boards_collection.create_indexes([
        IndexModel("seller_id"),
        IndexModel([("seller_id", 1), ("created_at", -1)]),
    ])

    await prizes_collection.create_indexes([
        IndexModel([("board_id", 1), ("sort_order", 1)]),
    ])

    await draw_events_collection.create_indexes([
        IndexModel([("board_id", 1), ("created_at", -1)]),
        IndexModel("prize_id"),
    ])

    # One overlay state row per board
    await overlay_states_collection.create_indexes([
        IndexModel("board_id", unique=True),
    ])

    await reconciliation_flags_collection.create_indexes([
        IndexModel([("board_id", 1), ("created_at", -1)]),
    ])

    logger.info("Database initialized successfully")


def get_record_store():
    return record_store


def get_sync_channel():
    return sync_channel
