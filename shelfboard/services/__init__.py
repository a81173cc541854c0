"""Stores, staging and sync services"""
from .asset_service import AssetStore
from .board_service import BoardView
from .item_service import ItemStore, MemoryItemStore, PostgresItemStore
from .staging_service import StagingSession
from .sync_service import InventorySyncController, SyncResult

__all__ = [
    'AssetStore',
    'BoardView',
    'ItemStore',
    'MemoryItemStore',
    'PostgresItemStore',
    'StagingSession',
    'InventorySyncController',
    'SyncResult'
]
