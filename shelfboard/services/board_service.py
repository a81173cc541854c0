# shelfboard/services/board_service.py
import logging
from typing import Dict, Iterable, List, Optional

from ..models.asset import Asset
from ..models.item import InventoryItem


class BoardView:
    """In-memory state of one open board.

    Loaded from the stores by open() and cleared by close(). Only the sync
    controller mutates it, and only after a store call has succeeded.
    """

    def __init__(self, board_id: str, asset_store, item_store):
        self.board_id = board_id
        self.asset_store = asset_store
        self.item_store = item_store
        self.logger = logging.getLogger(__name__)
        self.is_open = False
        self.items: List[InventoryItem] = []
        self.assets: List[Asset] = []
        self.categories: List[str] = []
        self.labels: List[str] = []
        self.paid_to_options: List[str] = []

    async def open(self):
        """Load items, assets and vocabularies of the board"""
        self.items = await self.item_store.get_items(self.board_id)
        self.assets = await self.asset_store.get_assets(self.board_id)
        await self.reload_vocabularies()
        self.is_open = True

        dangling = self.dangling_references()
        if dangling:
            self.logger.warning(
                f"Board {self.board_id}: {len(dangling)} items reference missing assets"
            )
        self.logger.info(
            f"Opened board {self.board_id} with {len(self.items)} items "
            f"and {len(self.assets)} assets"
        )

    def close(self):
        """Drop all state held for the board"""
        self.items = []
        self.assets = []
        self.categories = []
        self.labels = []
        self.paid_to_options = []
        self.is_open = False

    async def reload_vocabularies(self):
        self.categories = await self.item_store.get_categories(self.board_id)
        self.labels = await self.item_store.get_labels(self.board_id)
        self.paid_to_options = await self.item_store.get_paid_to_options(self.board_id)

    def get_item(self, item_id: str) -> Optional[InventoryItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def apply_created(self, item: InventoryItem, assets: Iterable[Asset] = ()):
        self.add_assets(assets)
        self.items.append(item)
        self._remember_vocabulary(item)

    def apply_updated(self, item: InventoryItem, assets: Iterable[Asset] = ()):
        self.add_assets(assets)
        self.items = [item if existing.id == item.id else existing for existing in self.items]
        self._remember_vocabulary(item)

    def apply_deleted(self, item_id: str):
        self.items = [item for item in self.items if item.id != item_id]

    def add_assets(self, assets: Iterable[Asset]):
        known = {asset.id for asset in self.assets}
        self.assets.extend(asset for asset in assets if asset.id not in known)

    def remove_assets(self, asset_ids: Iterable[str]):
        removed = set(asset_ids)
        self.assets = [asset for asset in self.assets if asset.id not in removed]

    def asset_map(self) -> Dict[str, Asset]:
        return {asset.id: asset for asset in self.assets}

    def resolve_images(self, item: InventoryItem) -> List[Asset]:
        """Assets of an item in presentation order; missing ids are skipped"""
        assets = self.asset_map()
        return [assets[image_id] for image_id in item.image_ids if image_id in assets]

    def thumbnail(self, item: InventoryItem) -> Optional[Asset]:
        if item.thumbnail_id is None:
            return None
        return self.asset_map().get(item.thumbnail_id)

    def dangling_references(self) -> Dict[str, List[str]]:
        """Item id -> image ids that do not resolve to an asset of this board"""
        return find_dangling_references(self.items, self.assets)

    def sorted_items(self, key: str = "created_at", reverse: bool = True) -> List[InventoryItem]:
        return sorted(self.items, key=lambda item: getattr(item, key), reverse=reverse)

    def _remember_vocabulary(self, item: InventoryItem):
        for values, value in ((self.categories, item.category),
                              (self.labels, item.label),
                              (self.paid_to_options, item.paid_to)):
            if value and value not in values:
                values.append(value)


def find_dangling_references(items: Iterable[InventoryItem],
                             assets: Iterable[Asset]) -> Dict[str, List[str]]:
    """Image ids that do not resolve to an asset of the item's own board"""
    owners = {asset.id: asset.board_id for asset in assets}
    dangling = {}
    for item in items:
        missing = [image_id for image_id in item.image_ids
                   if owners.get(image_id) != item.board_id]
        if missing:
            dangling[item.id] = missing
    return dangling
