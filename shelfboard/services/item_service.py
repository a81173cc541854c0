# shelfboard/services/item_service.py
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from ..exceptions import NotFoundError, StorageError
from ..models.base import utc_now
from ..models.item import InventoryItem, ItemCreateInput, calculate_profit

CATEGORY = "category"
LABEL = "label"
PAID_TO = "paid_to"

ITEM_COLUMNS = (
    "id", "board_id", "product_id", "title", "description", "category", "label",
    "sale_status", "purchase_price", "listed_price", "sold_at", "delivery_charges",
    "profit", "sale_type", "paid_to", "customer_name", "customer_email",
    "customer_phone", "customer_address", "image_ids", "created_at", "updated_at",
)


class ItemStore(ABC):
    """Inventory records and per-board vocabularies.

    Subclasses provide the storage primitives; id assignment, timestamps,
    profit and vocabulary registration live here so every backend behaves
    the same. Concurrent writers are last-write-wins.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    # -- storage primitives ------------------------------------------------

    @abstractmethod
    async def get_items(self, board_id: str) -> List[InventoryItem]:
        ...

    @abstractmethod
    async def get_item(self, item_id: str) -> InventoryItem:
        ...

    @abstractmethod
    async def _insert(self, item: InventoryItem):
        ...

    @abstractmethod
    async def _replace(self, item: InventoryItem):
        ...

    @abstractmethod
    async def _remove(self, item_id: str) -> bool:
        ...

    @abstractmethod
    async def _vocabulary(self, board_id: str, kind: str) -> List[str]:
        ...

    @abstractmethod
    async def _add_vocabulary(self, board_id: str, kind: str, value: str):
        ...

    @abstractmethod
    async def _remove_vocabulary(self, board_id: str, kind: str, value: str):
        ...

    # -- items -------------------------------------------------------------

    async def add_item(self, board_id: str, data: Any) -> InventoryItem:
        """Create an item; raises ValidationError for an empty title"""
        fields = ItemCreateInput.parse(data)
        now = self._now()
        item = InventoryItem(
            **fields.model_dump(),
            id=uuid.uuid4().hex,
            board_id=board_id,
            profit=calculate_profit(fields.sold_at, fields.purchase_price,
                                    fields.delivery_charges),
            created_at=now,
            updated_at=now
        )
        await self._insert(item)
        await self._register_vocabulary(item)
        self.logger.info(f"Item {item.id} created on board {board_id}")
        return item

    async def update_item(self, item_id: str, updates: Dict[str, Any]) -> InventoryItem:
        """Merge updates into an existing item and refresh updated_at"""
        existing = await self.get_item(item_id)
        item = existing.merged(updates, self._now(existing.updated_at))
        await self._replace(item)
        await self._register_vocabulary(item, existing)
        self.logger.info(f"Item {item_id} updated")
        return item

    async def delete_item(self, item_id: str):
        """Remove an item record; referenced assets are left alone"""
        if not await self._remove(item_id):
            raise NotFoundError(f"Item {item_id} not found")
        self.logger.info(f"Item {item_id} deleted")

    async def get_items_by_asset(self, board_id: str, asset_id: str) -> List[InventoryItem]:
        """Items of a board that reference an asset"""
        return [item for item in await self.get_items(board_id) if asset_id in item.image_ids]

    # -- vocabularies ------------------------------------------------------

    async def get_categories(self, board_id: str) -> List[str]:
        return await self._vocabulary(board_id, CATEGORY)

    async def add_category(self, board_id: str, category: str):
        await self._add_vocabulary(board_id, CATEGORY, category)

    async def remove_category(self, board_id: str, category: str):
        await self._remove_vocabulary(board_id, CATEGORY, category)

    async def get_labels(self, board_id: str) -> List[str]:
        return await self._vocabulary(board_id, LABEL)

    async def add_label(self, board_id: str, label: str):
        await self._add_vocabulary(board_id, LABEL, label)

    async def remove_label(self, board_id: str, label: str):
        await self._remove_vocabulary(board_id, LABEL, label)

    async def get_paid_to_options(self, board_id: str) -> List[str]:
        return await self._vocabulary(board_id, PAID_TO)

    async def add_paid_to_option(self, board_id: str, paid_to: str):
        await self._add_vocabulary(board_id, PAID_TO, paid_to)

    async def remove_paid_to_option(self, board_id: str, paid_to: str):
        await self._remove_vocabulary(board_id, PAID_TO, paid_to)

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _now(previous: Optional[datetime] = None) -> datetime:
        """Current UTC time, strictly later than previous"""
        now = utc_now()
        if previous is not None and now <= previous:
            return previous + timedelta(microseconds=1)
        return now

    async def _register_vocabulary(self, item: InventoryItem,
                                   previous: Optional[InventoryItem] = None):
        """Add newly used category, label and payee values to the board lists"""
        for kind in (CATEGORY, LABEL, PAID_TO):
            value = getattr(item, kind)
            if value and (previous is None or value != getattr(previous, kind)):
                await self._add_vocabulary(item.board_id, kind, value)


class MemoryItemStore(ItemStore):
    """Item store held in process memory"""

    def __init__(self):
        super().__init__()
        self._items: Dict[str, InventoryItem] = {}
        self._vocabularies: Dict[Tuple[str, str], List[str]] = defaultdict(list)

    async def get_items(self, board_id: str) -> List[InventoryItem]:
        return [
            item.model_copy(deep=True)
            for item in self._items.values()
            if item.board_id == board_id
        ]

    async def get_item(self, item_id: str) -> InventoryItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item.model_copy(deep=True)

    async def _insert(self, item: InventoryItem):
        self._items[item.id] = item.model_copy(deep=True)

    async def _replace(self, item: InventoryItem):
        if item.id not in self._items:
            raise NotFoundError(f"Item {item.id} not found")
        self._items[item.id] = item.model_copy(deep=True)

    async def _remove(self, item_id: str) -> bool:
        return self._items.pop(item_id, None) is not None

    async def _vocabulary(self, board_id: str, kind: str) -> List[str]:
        return list(self._vocabularies.get((board_id, kind), []))

    async def _add_vocabulary(self, board_id: str, kind: str, value: str):
        values = self._vocabularies[(board_id, kind)]
        if value not in values:
            values.append(value)

    async def _remove_vocabulary(self, board_id: str, kind: str, value: str):
        values = self._vocabularies.get((board_id, kind))
        if values and value in values:
            values.remove(value)


class PostgresItemStore(ItemStore):
    """Item store backed by the asyncpg pool of a connected Database"""

    def __init__(self, db):
        super().__init__()
        self.db = db

    async def get_items(self, board_id: str) -> List[InventoryItem]:
        rows = await self._fetch(f"""
            SELECT {', '.join(ITEM_COLUMNS)}
            FROM items
            WHERE board_id = $1
            ORDER BY created_at
        """, board_id)
        return [InventoryItem.model_validate(dict(row)) for row in rows]

    async def get_item(self, item_id: str) -> InventoryItem:
        rows = await self._fetch(f"""
            SELECT {', '.join(ITEM_COLUMNS)}
            FROM items
            WHERE id = $1
        """, item_id)
        if not rows:
            raise NotFoundError(f"Item {item_id} not found")
        return InventoryItem.model_validate(dict(rows[0]))

    async def _insert(self, item: InventoryItem):
        placeholders = ", ".join(f"${i}" for i in range(1, len(ITEM_COLUMNS) + 1))
        await self._execute(f"""
            INSERT INTO items ({', '.join(ITEM_COLUMNS)})
            VALUES ({placeholders})
        """, *self._values(item))

    async def _replace(self, item: InventoryItem):
        assignments = ", ".join(
            f"{column} = ${i}" for i, column in enumerate(ITEM_COLUMNS[1:], start=2)
        )
        result = await self._execute(f"""
            UPDATE items
            SET {assignments}
            WHERE id = $1
        """, *self._values(item))
        if result != "UPDATE 1":
            raise NotFoundError(f"Item {item.id} not found")

    async def _remove(self, item_id: str) -> bool:
        result = await self._execute("DELETE FROM items WHERE id = $1", item_id)
        return result == "DELETE 1"

    async def _vocabulary(self, board_id: str, kind: str) -> List[str]:
        rows = await self._fetch("""
            SELECT value
            FROM vocabulary
            WHERE board_id = $1 AND kind = $2
            ORDER BY id
        """, board_id, kind)
        return [row['value'] for row in rows]

    async def _add_vocabulary(self, board_id: str, kind: str, value: str):
        await self._execute("""
            INSERT INTO vocabulary (board_id, kind, value)
            VALUES ($1, $2, $3)
            ON CONFLICT (board_id, kind, value) DO NOTHING
        """, board_id, kind, value)

    async def _remove_vocabulary(self, board_id: str, kind: str, value: str):
        await self._execute("""
            DELETE FROM vocabulary
            WHERE board_id = $1 AND kind = $2 AND value = $3
        """, board_id, kind, value)

    @staticmethod
    def _values(item: InventoryItem) -> List[Any]:
        data = item.model_dump()
        data["sale_status"] = item.sale_status.value
        data["sale_type"] = item.sale_type.value
        return [data[column] for column in ITEM_COLUMNS]

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        try:
            async with self.db.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error(f"Item query failed: {e}")
            raise StorageError(f"Item query failed: {e}") from e

    async def _execute(self, query: str, *args) -> str:
        try:
            async with self.db.pool.acquire() as conn:
                return await conn.execute(query, *args)
        except (OSError, asyncpg.PostgresError) as e:
            self.logger.error(f"Item write failed: {e}")
            raise StorageError(f"Item write failed: {e}") from e
