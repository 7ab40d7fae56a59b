# pricewatch/models/run_summary.py

"""Result containers for one refresh pass."""

from dataclasses import dataclass, field
from datetime import datetime

from pricewatch.models.tracked_item import TrackedItem

STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"


@dataclass
class CanonicalUrlGroup:
    """Tracked items that resolve to the same canonical page."""

    canonical_key: str
    members: list[TrackedItem] = field(
        default_factory=lambda: list[TrackedItem]()
    )

    @property
    def representative(self) -> TrackedItem:
        """The first member seen for this key; its raw URL is fetched."""
        return self.members[0]


@dataclass
class GroupOutcome:
    """Counts produced by processing one canonical URL group."""

    canonical_key: str
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )


@dataclass
class RunSummary:
    """Totals for a completed (or rejected) refresh pass."""

    total_items: int = 0
    unique_url_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )
    status: str = STATUS_COMPLETED  # "completed" or "rejected"
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def rejected(self) -> bool:
        """True when the pass was refused because another was active."""
        return self.status == STATUS_REJECTED

    def merge(self, outcome: GroupOutcome) -> None:
        """Fold one group's counts into the running totals."""
        self.updated_count += outcome.updated
        self.skipped_count += outcome.skipped
        self.failed_count += outcome.failed
        self.errors.extend(outcome.errors)

    def describe(self) -> str:
        """One-line summary used by the CLI and scheduler logs."""
        if self.rejected:
            return "Price update skipped: another run is in progress"
        return (
            f"Price update completed: {self.updated_count} updated, "
            f"{self.skipped_count} skipped, {self.failed_count} failed "
            f"({self.total_items} items, "
            f"{self.unique_url_count} unique URLs)"
        )
