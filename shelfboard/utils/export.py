# shelfboard/utils/export.py
import csv
import io
from pathlib import Path
from typing import Iterable, List

from ..models.item import InventoryItem
from .formatters import format_amount, format_datetime

CSV_HEADERS = [
    'ID',
    'Category',
    'Label',
    'Status',
    'Purchase Price',
    'Listed Price',
    'Sold At',
    'Delivery Charges',
    'Profit',
    'Sale Type',
    'Paid To',
    'Customer Name',
    'Customer Email',
    'Customer Phone',
    'Customer Address',
    'Created At',
    'Updated At'
]


def item_row(item: InventoryItem) -> List[str]:
    """One CSV row; sale columns stay empty while the item is unsold"""
    return [
        item.id,
        item.category or '',
        item.label or '',
        item.sale_status.value,
        format_amount(item.purchase_price),
        format_amount(item.listed_price),
        format_amount(item.sold_at) if item.is_sold else '',
        format_amount(item.delivery_charges),
        format_amount(item.profit) if item.is_sold else '',
        item.sale_type.value,
        item.paid_to or '',
        item.customer_name or '',
        item.customer_email or '',
        item.customer_phone or '',
        item.customer_address or '',
        format_datetime(item.created_at),
        format_datetime(item.updated_at)
    ]


def to_csv(items: Iterable[InventoryItem]) -> str:
    """Inventory as CSV text; header bare, every data cell quoted"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    buffer.write(",".join(CSV_HEADERS) + "\n")
    for item in items:
        writer.writerow(item_row(item))
    return buffer.getvalue().rstrip("\n")


def write_csv(items: Iterable[InventoryItem], path: Path) -> Path:
    path = Path(path)
    path.write_text(to_csv(items), encoding='utf-8')
    return path
