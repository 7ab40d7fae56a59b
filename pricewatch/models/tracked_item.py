# pricewatch/models/tracked_item.py

"""Tracked item model: one owner's binding to a monitored product URL."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass
class TrackedItem:
    """A product or competitor URL that an owner is tracking."""

    id: int
    owner_id: str
    url: str
    name: str = ""
    last_known_price_native: Decimal = Decimal("0")
    last_known_price_base: Decimal = Decimal("0")
    currency_code: str = "INR"
    updated_at: datetime = field(default_factory=datetime.now)
    canonical_product_id: int | None = None

    @property
    def label(self) -> str:
        """Human-readable name used in run errors and logs."""
        return self.name or f"item #{self.id}"
