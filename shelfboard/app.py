# shelfboard/app.py
import logging
from pathlib import Path
from typing import Optional, Tuple

from .config import Config
from .database.database import Database
from .services.asset_service import AssetStore, validate_board_id
from .services.board_service import BoardView
from .services.item_service import ItemStore, MemoryItemStore, PostgresItemStore
from .services.staging_service import StagingSession
from .services.sync_service import InventorySyncController


class InventoryApp:
    def __init__(self, database_url: Optional[str] = None,
                 upload_path: Optional[Path] = None,
                 item_store: Optional[ItemStore] = None):
        """Wire the stores; items go to Postgres when a database URL is configured"""
        self.database_url = database_url or Config.DATABASE_URL
        self.upload_path = Path(upload_path or Config.UPLOAD_DIR)
        self.db: Optional[Database] = None
        self.asset_store = AssetStore(self.upload_path)
        self.item_store = item_store
        self.logger = logging.getLogger(__name__)

    async def start(self):
        """Connect the item store"""
        if self.item_store is not None:
            return
        if self.database_url:
            self.db = Database(self.database_url)
            await self.db.connect()
            self.item_store = PostgresItemStore(self.db)
        else:
            self.logger.warning("DATABASE_URL not set; items are kept in memory only")
            self.item_store = MemoryItemStore()

    async def stop(self):
        if self.db:
            await self.db.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def open_board(self, board_id: str, **callbacks) -> Tuple[BoardView, InventorySyncController]:
        """Load a board and return its view with a controller bound to it"""
        validate_board_id(board_id)
        view = BoardView(board_id, self.asset_store, self.item_store)
        await view.open()
        controller = InventorySyncController(self.asset_store, self.item_store, view, **callbacks)
        return view, controller

    def new_session(self, board_id: str, on_change=None) -> StagingSession:
        """Staging session for one item form"""
        return StagingSession(
            board_id,
            temp_dir=self.upload_path / 'temp',
            on_change=on_change
        )
