# pricewatch/models/price_history_entry.py

"""Append-only price observation recorded when a tracked price changes."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class PriceHistoryEntry:
    """A single price change for a tracked item at a point in time."""

    tracked_item_id: int
    price_native: Decimal
    currency_code: str
    price_base: Decimal
    recorded_at: datetime
