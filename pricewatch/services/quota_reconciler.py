# pricewatch/services/quota_reconciler.py

"""Read-time reconciliation of each owner's URL quota counter."""

import logging

from pricewatch.models.quota import QuotaStatus
from pricewatch.storage.tracked_item_db import TrackedItemDB

logger = logging.getLogger("pricewatch.quota")


class QuotaReconciler:
    """Heal under-counted quota usage whenever it is read.

    The stored ``url_used`` counter is raised to the number of the
    owner's items that occupy a canonical product slot, but it is never
    lowered: deleting a tracked item does not hand its slot back.
    """

    def __init__(self, repository: TrackedItemDB) -> None:
        self._repository = repository

    def get_quota(self, owner_id: str) -> QuotaStatus:
        """Return the reconciled quota for *owner_id*.

        Raises:
            OwnerNotFoundError: If the owner does not exist.
        """
        limit, stored_used = self._repository.get_quota(owner_id)
        ground_truth = self._repository.count_grouped_items(owner_id)

        used = stored_used
        if ground_truth > stored_used:
            logger.info(
                "Quota drift for %s: stored %d < actual %d, correcting",
                owner_id, stored_used, ground_truth,
            )
            used = self._repository.raise_quota_used(
                owner_id, ground_truth,
            )

        used = max(0, used)
        return QuotaStatus(
            limit=limit,
            used=used,
            remaining=max(0, limit - used),
            exceeded=used >= limit,
        )
