from fastapi import Depends

from database import get_record_store, get_sync_channel
from services.board_service import BoardService
from services.inventory_ledger import InventoryLedger
from services.overlay_state import OverlayStateMachine

_ledgers = {}


def get_overlay_machine(store=Depends(get_record_store)) -> OverlayStateMachine:
    return OverlayStateMachine(store)


def get_ledger(store=Depends(get_record_store)) -> InventoryLedger:
    # One ledger per store so per-prize draw locks are shared by every request
    ledger = _ledgers.get(id(store))
    if ledger is None or ledger.store is not store:
        ledger = InventoryLedger(store)
        _ledgers[id(store)] = ledger
    return ledger


def get_board_service(store=Depends(get_record_store)) -> BoardService:
    return BoardService(store)


__all__ = [
    "get_record_store",
    "get_sync_channel",
    "get_overlay_machine",
    "get_ledger",
    "get_board_service",
]
