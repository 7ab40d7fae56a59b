# tests/test_run_summary.py

"""Tests for refresh result containers."""

import unittest
from decimal import Decimal

from pricewatch.models.run_summary import (
    STATUS_COMPLETED,
    STATUS_REJECTED,
    CanonicalUrlGroup,
    GroupOutcome,
    RunSummary,
)
from pricewatch.models.tracked_item import TrackedItem


class TestRunSummary(unittest.TestCase):
    """Tests for RunSummary."""

    def test_defaults(self) -> None:
        """A fresh summary is an empty completed pass."""
        summary = RunSummary()
        self.assertEqual(summary.status, STATUS_COMPLETED)
        self.assertFalse(summary.rejected)
        self.assertEqual(summary.errors, [])

    def test_merge_accumulates(self) -> None:
        """Group outcomes add into the totals."""
        summary = RunSummary(total_items=4, unique_url_count=2)
        summary.merge(GroupOutcome("https://a.com/", updated=2))
        summary.merge(GroupOutcome(
            "https://b.com/", skipped=1, failed=1, errors=["boom"],
        ))
        self.assertEqual(summary.updated_count, 2)
        self.assertEqual(summary.skipped_count, 1)
        self.assertEqual(summary.failed_count, 1)
        self.assertEqual(summary.errors, ["boom"])

    def test_describe(self) -> None:
        """describe() gives the one-line log summary."""
        summary = RunSummary(
            total_items=3, unique_url_count=2,
            updated_count=1, skipped_count=1, failed_count=1,
        )
        self.assertEqual(
            summary.describe(),
            "Price update completed: 1 updated, 1 skipped, 1 failed "
            "(3 items, 2 unique URLs)",
        )
        self.assertIn(
            "another run is in progress",
            RunSummary(status=STATUS_REJECTED).describe(),
        )

    def test_errors_not_shared(self) -> None:
        """Each summary owns its error list."""
        first, second = RunSummary(), RunSummary()
        first.errors.append("x")
        self.assertEqual(second.errors, [])


class TestCanonicalUrlGroup(unittest.TestCase):
    """Tests for CanonicalUrlGroup."""

    def test_representative(self) -> None:
        """The first member stands in for the group."""
        members = [
            TrackedItem(id=n, owner_id="o", url=f"https://a.com/{n}")
            for n in (5, 3)
        ]
        group = CanonicalUrlGroup("https://a.com/", members)
        self.assertIs(group.representative, members[0])

    def test_item_label(self) -> None:
        """Unnamed items fall back to their id."""
        item = TrackedItem(
            id=9, owner_id="o", url="u", last_known_price_base=Decimal("1"),
        )
        self.assertEqual(item.label, "item #9")
        item.name = "Lamp"
        self.assertEqual(item.label, "Lamp")


if __name__ == "__main__":
    unittest.main()
