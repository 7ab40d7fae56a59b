# pricewatch/models/extraction.py

"""Shape of a successful price extraction."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class ExtractionResult:
    """Raw price read from a product page.

    ``currency_code`` is ``None`` when the page did not reveal one; the
    refresh pipeline then applies ``Settings.DEFAULT_CURRENCY``.
    """

    price: Decimal
    currency_code: str | None = None
    name: str = ""
