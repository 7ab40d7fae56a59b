# pricewatch/services/item_admission.py

"""Quota-gated admission of new tracked URLs."""

import logging
from decimal import Decimal

from pricewatch.config.settings import Settings
from pricewatch.extractors.base_extractor import BaseExtractor
from pricewatch.models.tracked_item import TrackedItem
from pricewatch.services.currency_normalizer import CurrencyNormalizer
from pricewatch.services.quota_reconciler import QuotaReconciler
from pricewatch.storage.tracked_item_db import TrackedItemDB

logger = logging.getLogger("pricewatch.admission")


class QuotaExceededError(Exception):
    """The owner has no URL slots left."""

    def __init__(self, owner_id: str, used: int, limit: int) -> None:
        super().__init__(
            f"URL quota exceeded for {owner_id}: {used}/{limit}"
        )
        self.owner_id = owner_id
        self.used = used
        self.limit = limit


class ProductNotFoundError(LookupError):
    """The canonical product to file a competitor under does not exist."""

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class ProductAccessError(PermissionError):
    """The canonical product belongs to a different owner."""

    def __init__(self, owner_id: str, product_id: int) -> None:
        super().__init__(
            f"Product {product_id} is not tracked by {owner_id}"
        )
        self.owner_id = owner_id
        self.product_id = product_id


class ItemAdmission:
    """Adds a tracked URL for an owner if their quota allows it."""

    def __init__(
        self,
        repository: TrackedItemDB,
        extractor: BaseExtractor,
        normalizer: CurrencyNormalizer | None = None,
        default_currency: str | None = None,
    ) -> None:
        self._repository = repository
        self._extractor = extractor
        self._normalizer = normalizer or CurrencyNormalizer()
        self._quota = QuotaReconciler(repository)
        self._default_currency = (
            default_currency or Settings.DEFAULT_CURRENCY
        ).upper()

    def add_item(
        self,
        owner_id: str,
        url: str,
        name: str = "",
        canonical_product_id: int | None = None,
    ) -> TrackedItem:
        """Price *url* once and start tracking it for *owner_id*.

        Passing ``canonical_product_id`` files the URL as a competitor
        of an existing product; otherwise it starts a new product.

        Raises:
            ValueError: If *url* is blank.
            ProductNotFoundError: If *canonical_product_id* does not exist.
            ProductAccessError: If *owner_id* tracks nothing under
                *canonical_product_id*.
            QuotaExceededError: If the owner's quota is used up.
            ExtractionError: If the initial price cannot be read.
            UnknownCurrencyError: If the page's currency has no rate.
            DuplicateItemError: If the owner already tracks *url*.
        """
        url = url.strip()
        if not url:
            raise ValueError("A tracked item needs a URL")

        if canonical_product_id is not None:
            self._check_product(owner_id, canonical_product_id)

        quota = self._quota.get_quota(owner_id)
        if quota.exceeded:
            logger.warning(
                "Rejected %s for %s: quota %d/%d",
                url, owner_id, quota.used, quota.limit,
            )
            raise QuotaExceededError(owner_id, quota.used, quota.limit)

        result = self._extractor.extract(url)
        currency = (
            (result.currency_code or "").strip().upper()
            or self._default_currency
        )
        price_native = self._normalizer.round_price(
            Decimal(str(result.price))
        )
        price_base = self._normalizer.to_base(price_native, currency)

        return self._repository.add_item(
            owner_id=owner_id,
            url=url,
            name=name or result.name,
            price_native=price_native,
            price_base=price_base,
            currency_code=currency,
            canonical_product_id=canonical_product_id,
        )

    def _check_product(self, owner_id: str, product_id: int) -> None:
        owners = self._repository.get_product_owners(product_id)
        if owners is None:
            raise ProductNotFoundError(product_id)
        if owner_id not in owners:
            logger.warning(
                "Rejected competitor for %s: product %d owned by others",
                owner_id, product_id,
            )
            raise ProductAccessError(owner_id, product_id)
