# shelfboard/utils/formatters.py
from datetime import datetime
import pytz
from decimal import Decimal
from ..config import Config

def format_price(amount: Decimal) -> str:
    """Price with thousands separators and two decimals"""
    return f"{amount:,.2f}"

def format_amount(amount: Decimal) -> str:
    """Plain two-decimal amount, as written to CSV"""
    return f"{amount:.2f}"

def format_datetime(dt: datetime) -> str:
    """Timestamp in the configured local timezone"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    local_time = dt.astimezone(local_tz)
    return local_time.strftime("%Y-%m-%d %H:%M:%S")
