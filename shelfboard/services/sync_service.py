# shelfboard/services/sync_service.py
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import InventoryError, StorageError, ValidationError
from ..models.asset import Asset
from ..models.item import IMMUTABLE_FIELDS, InventoryItem, ItemCreateInput
from ..models.staged_file import StagedFile
from .board_service import BoardView, find_dangling_references
from .staging_service import StagingSession


class SyncResult(BaseModel):
    """Outcome of a create, update or delete"""
    success: bool
    item: Optional[InventoryItem] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    exception: Optional[Exception] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def ok(cls, item: Optional[InventoryItem] = None) -> "SyncResult":
        return cls(success=True, item=item)

    @classmethod
    def failed(cls, error: InventoryError) -> "SyncResult":
        return cls(success=False, error=str(error), error_code=error.code, exception=error)


class InventorySyncController:
    """Keeps items and their media consistent across create, edit and delete.

    A submit validates locally, uploads every eligible staged file at once,
    appends the new asset ids (edit) and commits the record. The board view
    changes only when the whole operation succeeded.
    """

    def __init__(self, asset_store, item_store, view: BoardView,
                 on_created: Optional[Callable[[InventoryItem], Any]] = None,
                 on_updated: Optional[Callable[[InventoryItem], Any]] = None,
                 on_deleted: Optional[Callable[[str], Any]] = None,
                 on_failed: Optional[Callable[[InventoryError], Any]] = None):
        self.asset_store = asset_store
        self.item_store = item_store
        self.view = view
        self.on_created = on_created
        self.on_updated = on_updated
        self.on_deleted = on_deleted
        self.on_failed = on_failed
        self.logger = logging.getLogger(__name__)

    @property
    def board_id(self) -> str:
        return self.view.board_id

    async def submit(self, fields: Dict[str, Any], session: StagingSession,
                     edit_item: Optional[InventoryItem] = None) -> SyncResult:
        """Create an item, or update edit_item, from form fields and staged files"""
        operation = "update" if edit_item else "create"
        try:
            if edit_item is None:
                item = await self._create(fields, session)
            else:
                item = await self._update(fields, session, edit_item)
        except InventoryError as e:
            return self._fail(operation, e)

        await session.close()
        self._call(self.on_updated if edit_item else self.on_created, item)
        return SyncResult.ok(item)

    async def update_fields(self, item_id: str, updates: Dict[str, Any]) -> SyncResult:
        """Inline edit of an item without touching its media"""
        try:
            item = await self.item_store.update_item(item_id, updates)
        except InventoryError as e:
            return self._fail("update", e)

        self.view.apply_updated(item)
        self._call(self.on_updated, item)
        return SyncResult.ok(item)

    async def delete(self, item_id: str) -> SyncResult:
        """Delete an item, then any of its assets no other item references"""
        try:
            item = await self.item_store.get_item(item_id)
            await self.item_store.delete_item(item_id)
        except InventoryError as e:
            return self._fail("delete", e)

        self.view.apply_deleted(item_id)
        try:
            await self._release_assets(item)
        except InventoryError as e:
            # Left for collect_orphans
            self.logger.error(f"Could not release assets of deleted item {item_id}: {e}")
        self._call(self.on_deleted, item_id)
        return SyncResult.ok(item)

    async def check_integrity(self) -> Dict[str, List[str]]:
        """Item id -> image ids that no longer resolve, read from the stores"""
        items = await self.item_store.get_items(self.board_id)
        assets = await self.asset_store.get_assets(self.board_id)
        return find_dangling_references(items, assets)

    async def collect_orphans(self) -> List[str]:
        """Delete assets of the board that no item references"""
        items = await self.item_store.get_items(self.board_id)
        referenced = {image_id for item in items for image_id in item.image_ids}
        removed = []
        for asset in await self.asset_store.get_assets(self.board_id):
            if asset.id not in referenced and await self.asset_store.delete_asset(self.board_id, asset.id):
                removed.append(asset.id)

        self.view.remove_assets(removed)
        if removed:
            self.logger.info(f"Removed {len(removed)} orphaned assets from board {self.board_id}")
        return removed

    async def _create(self, fields: Dict[str, Any], session: StagingSession) -> InventoryItem:
        data = self._clean(fields)
        data.pop("image_ids", None)
        item_input = ItemCreateInput.parse(data)

        eligible = await session.finalize()
        if not eligible:
            raise ValidationError("At least one photo or video is required")

        assets = await self._upload(eligible)
        item = await self.item_store.add_item(
            self.board_id,
            item_input.model_copy(update={"image_ids": [asset.id for asset in assets]})
        )
        self.view.apply_created(item, assets)
        return item

    async def _update(self, fields: Dict[str, Any], session: StagingSession,
                      edit_item: InventoryItem) -> InventoryItem:
        if edit_item.board_id != self.board_id:
            raise ValidationError(f"Item {edit_item.id} belongs to another board")

        updates = self._clean(fields)
        updates.pop("image_ids", None)
        # Validate the merged record before anything is uploaded
        edit_item.merged(updates, edit_item.updated_at)

        eligible = await session.finalize()
        assets = await self._upload(eligible)
        updates["image_ids"] = list(edit_item.image_ids) + [asset.id for asset in assets]

        item = await self.item_store.update_item(edit_item.id, updates)
        self.view.apply_updated(item, assets)
        return item

    async def _upload(self, files: List[StagedFile]) -> List[Asset]:
        """Persist all files concurrently; fails if any single upload fails"""
        if not files:
            return []

        results = await asyncio.gather(
            *(self.asset_store.add_asset(self.board_id, staged.source) for staged in files),
            return_exceptions=True
        )
        uploaded = [r for r in results if isinstance(r, Asset)]
        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return uploaded

        if uploaded:
            self.logger.warning(
                f"Upload to board {self.board_id} failed; stored assets left unreferenced: "
                f"{', '.join(asset.id for asset in uploaded)}"
            )
        error = failures[0]
        if isinstance(error, InventoryError):
            raise error
        if isinstance(error, Exception):
            raise StorageError(f"Upload failed: {error}") from error
        raise error

    async def _release_assets(self, item: InventoryItem):
        remaining = await self.item_store.get_items(item.board_id)
        referenced = {image_id for other in remaining for image_id in other.image_ids}
        removed = []
        for image_id in item.image_ids:
            if image_id in referenced:
                continue
            try:
                if await self.asset_store.delete_asset(item.board_id, image_id):
                    removed.append(image_id)
            except StorageError as e:
                # Left for collect_orphans
                self.logger.error(f"Could not delete asset {image_id} of item {item.id}: {e}")
        self.view.remove_assets(removed)

    @staticmethod
    def _clean(fields: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(fields, BaseModel):
            fields = fields.model_dump(exclude_unset=True)
        return {key: value for key, value in fields.items() if key not in IMMUTABLE_FIELDS}

    def _fail(self, operation: str, error: InventoryError) -> SyncResult:
        if isinstance(error, StorageError):
            self.logger.error(f"Failed to {operation} item on board {self.board_id}: {error}")
        else:
            self.logger.warning(f"Rejected {operation} on board {self.board_id}: {error}")
        self._call(self.on_failed, error)
        return SyncResult.failed(error)

    @staticmethod
    def _call(callback: Optional[Callable], *args):
        if callback is not None:
            callback(*args)
