import asyncio
import logging

from pymongo.errors import PyMongoError

from services.sync_channel import ChangeEvent, SyncChannel

logger = logging.getLogger(__name__)

_OPERATIONS = {"insert": "insert", "update": "update", "replace": "update", "delete": "delete"}


def change_to_event(change: dict):
    """Translate a MongoDB change stream document into a ChangeEvent"""
    operation = _OPERATIONS.get(change.get("operationType"))
    if operation is None:
        return None

    table = change.get("ns", {}).get("coll")
    if not table:
        return None

    # Deletes only carry the document key
    record = change.get("fullDocument") or change.get("documentKey") or {}
    return ChangeEvent(table=table, operation=operation, record=dict(record))


class ChangeStreamRelay:
    """Republishes database change stream events on the local SyncChannel.

    Lets several service processes drive the same control rooms and overlays.
    Needs a replica set; reconnects after transport errors.
    """

    def __init__(self, database, channel: SyncChannel, retry_seconds: float = 5.0):
        self.database = database
        self.channel = channel
        self.retry_seconds = retry_seconds

    async def run(self):
        while True:
            try:
                async with self.database.watch(full_document="updateLookup") as stream:
                    logger.info("Change stream relay connected")
                    async for change in stream:
                        event = change_to_event(change)
                        if event is not None:
                            self.channel.publish(event)
            except asyncio.CancelledError:
                logger.info("Change stream relay stopped")
                raise
            except PyMongoError as e:
                logger.error(f"Change stream relay error: {e}")
                await asyncio.sleep(self.retry_seconds)
