# shelfboard/models/item.py
import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from .base import TimeStampedModel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Fields the store owns; callers never set them through an update
IMMUTABLE_FIELDS = frozenset({"id", "board_id", "created_at", "updated_at", "profit"})


class SaleStatus(str, Enum):
    AVAILABLE = "available"
    PENDING = "pending"
    SOLD = "sold"


class SaleType(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


def calculate_profit(sold_at: Decimal, purchase_price: Decimal,
                     delivery_charges: Decimal) -> Decimal:
    """Profit of a sold item; zero while the item is unsold"""
    if sold_at and sold_at > 0:
        return sold_at - purchase_price - delivery_charges
    return Decimal("0")


def _error_message(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        message = error["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


class ItemFields(BaseModel):
    """Caller-settable fields of an inventory item"""
    product_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    label: Optional[str] = None

    sale_status: SaleStatus = SaleStatus.AVAILABLE
    purchase_price: Decimal = Field(default=Decimal("0"), ge=0)
    listed_price: Decimal = Field(default=Decimal("0"), ge=0)
    sold_at: Decimal = Field(default=Decimal("0"), ge=0)
    delivery_charges: Decimal = Field(default=Decimal("0"), ge=0)
    sale_type: SaleType = SaleType.ONLINE
    paid_to: Optional[str] = None

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None

    image_ids: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True, extra="forbid")

    @field_validator("title")
    @classmethod
    def title_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("customer_email")
    @classmethod
    def email_format(cls, value: Optional[str]) -> Optional[str]:
        if value and not EMAIL_PATTERN.match(value.strip()):
            raise ValueError("Invalid email address")
        return value.strip() if value else value

    @field_validator("sold_at", "purchase_price", "listed_price", "delivery_charges",
                     mode="before")
    @classmethod
    def blank_as_zero(cls, value: Any) -> Any:
        # Form inputs submit "" or None for an untouched price
        if value is None or value == "":
            return Decimal("0")
        return value


class ItemCreateInput(ItemFields):
    """Input for ItemStore.add_item"""

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "ItemCreateInput":
        """Validate raw form data, raising the inventory ValidationError"""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(_error_message(e)) from e


class InventoryItem(ItemFields, TimeStampedModel):
    """Inventory item record owned by the item store"""
    id: str
    board_id: str
    profit: Decimal = Decimal("0")
    updated_at: datetime

    @property
    def thumbnail_id(self) -> Optional[str]:
        return self.image_ids[0] if self.image_ids else None

    @property
    def is_sold(self) -> bool:
        return self.sold_at > 0

    def merged(self, updates: Dict[str, Any], updated_at: datetime) -> "InventoryItem":
        """Return a copy with updates applied, profit recomputed and updated_at set"""
        unknown = set(updates) - set(ItemFields.model_fields) - IMMUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item fields: {', '.join(sorted(unknown))}")

        data = self.model_dump()
        for key, value in updates.items():
            if key in IMMUTABLE_FIELDS:
                continue
            if key == "image_ids" and value is None:
                continue
            data[key] = value
        data["updated_at"] = updated_at

        try:
            item = InventoryItem.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(_error_message(e)) from e
        item.profit = calculate_profit(item.sold_at, item.purchase_price, item.delivery_charges)
        return item
