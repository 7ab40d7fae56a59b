# pricewatch/storage/tracked_item_db.py

"""SQLite-backed store for tracked items, their price history and quotas."""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from pricewatch.config.settings import Settings
from pricewatch.models.price_history_entry import PriceHistoryEntry
from pricewatch.models.tracked_item import TrackedItem

logger = logging.getLogger("pricewatch.storage")

# Changes smaller than this share of the old price are rounding noise
_MIN_CHANGE_PERCENT = Decimal("0.01")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS owners (
    id         TEXT    PRIMARY KEY,
    url_quota  INTEGER NOT NULL DEFAULT 50,
    url_used   INTEGER NOT NULL DEFAULT 0,
    created_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS canonical_products (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS tracked_items (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id             TEXT    NOT NULL
                         REFERENCES owners(id) ON DELETE CASCADE,
    canonical_product_id INTEGER
                         REFERENCES canonical_products(id)
                         ON DELETE CASCADE,
    name                 TEXT    NOT NULL DEFAULT '',
    url                  TEXT    NOT NULL DEFAULT '',
    latest_price         TEXT    NOT NULL DEFAULT '0',
    price_base           TEXT    NOT NULL DEFAULT '0',
    currency             TEXT    NOT NULL DEFAULT 'INR',
    created_at           TEXT    NOT NULL,
    updated_at           TEXT    NOT NULL,
    UNIQUE (url, owner_id)
);

CREATE TABLE IF NOT EXISTS price_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    tracked_item_id INTEGER NOT NULL
                    REFERENCES tracked_items(id) ON DELETE CASCADE,
    price           TEXT    NOT NULL,
    price_base      TEXT    NOT NULL,
    currency        TEXT    NOT NULL,
    recorded_at     TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_owner
    ON tracked_items(owner_id);
CREATE INDEX IF NOT EXISTS idx_items_canonical
    ON tracked_items(canonical_product_id);
CREATE INDEX IF NOT EXISTS idx_history_item_date
    ON price_history(tracked_item_id, recorded_at);
"""

_ITEM_COLUMNS = (
    "id, owner_id, url, name, latest_price, price_base, "
    "currency, updated_at, canonical_product_id"
)

# TrackedItem attribute -> column, for update_item()
_UPDATABLE: dict[str, str] = {
    "last_known_price_native": "latest_price",
    "last_known_price_base": "price_base",
    "currency_code": "currency",
    "updated_at": "updated_at",
    "name": "name",
    "url": "url",
}


class PersistenceError(Exception):
    """A write to the store failed and was rolled back."""


class RepositoryUnavailableError(Exception):
    """The store could not be read at all."""


class OwnerNotFoundError(LookupError):
    """No owner row exists for the given id."""


class DuplicateItemError(ValueError):
    """The owner already tracks this exact URL."""


def _to_db(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _row_to_item(row: tuple[Any, ...]) -> TrackedItem:
    return TrackedItem(
        id=row[0],
        owner_id=row[1],
        url=row[2],
        name=row[3],
        last_known_price_native=Decimal(row[4]),
        last_known_price_base=Decimal(row[5]),
        currency_code=row[6],
        updated_at=datetime.fromisoformat(row[7]),
        canonical_product_id=row[8],
    )


class TrackedItemDB:
    """SQLite store shared by the refresh pipeline and quota reads.

    The connection is shared across worker threads; every statement
    runs under one re-entrant lock, and each write helper is a single
    transaction that commits or rolls back as a whole.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("TrackedItemDB opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block atomically; sqlite errors become PersistenceError."""
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise PersistenceError(str(exc)) from exc
            except BaseException:
                self._conn.rollback()
                raise

    def _fetchone(
        self, sql: str, params: tuple[Any, ...] = (),
    ) -> tuple[Any, ...] | None:
        with self._lock:
            row: tuple[Any, ...] | None = self._conn.execute(
                sql, params,
            ).fetchone()
        return row

    def _fetchall(
        self, sql: str, params: tuple[Any, ...] = (),
    ) -> list[tuple[Any, ...]]:
        with self._lock:
            rows: list[tuple[Any, ...]] = self._conn.execute(
                sql, params,
            ).fetchall()
        return rows

    # ── Owners & quota ───────────────────────────────────

    def ensure_owner(
        self, owner_id: str, quota_limit: int | None = None,
    ) -> None:
        """Create the owner row if missing (existing rows untouched)."""
        limit = (
            quota_limit if quota_limit is not None
            else Settings.DEFAULT_URL_QUOTA
        )
        with self._transaction() as cur:
            cur.execute(
                "INSERT OR IGNORE INTO owners "
                "(id, url_quota, url_used, created_at) "
                "VALUES (?, ?, 0, ?)",
                (owner_id, limit, datetime.now().isoformat()),
            )

    def get_quota(self, owner_id: str) -> tuple[int, int]:
        """Return the stored ``(limit, used)`` pair for an owner."""
        row = self._fetchone(
            "SELECT url_quota, url_used FROM owners WHERE id = ?",
            (owner_id,),
        )
        if row is None:
            raise OwnerNotFoundError(owner_id)
        return int(row[0]), int(row[1])

    def set_quota_used(self, owner_id: str, used: int) -> None:
        """Overwrite the owner's consumed-quota counter."""
        with self._transaction() as cur:
            cur.execute(
                "UPDATE owners SET url_used = ? WHERE id = ?",
                (used, owner_id),
            )
            if cur.rowcount == 0:
                raise OwnerNotFoundError(owner_id)

    def raise_quota_used(self, owner_id: str, floor: int) -> int:
        """Lift ``url_used`` to at least *floor* and return the result.

        The counter is never lowered, even if admissions committed after
        *floor* was counted.
        """
        with self._transaction() as cur:
            cur.execute(
                "UPDATE owners SET url_used = MAX(url_used, ?) "
                "WHERE id = ?",
                (floor, owner_id),
            )
            if cur.rowcount == 0:
                raise OwnerNotFoundError(owner_id)
            row = cur.execute(
                "SELECT url_used FROM owners WHERE id = ?", (owner_id,),
            ).fetchone()
        return int(row[0])

    def count_grouped_items(self, owner_id: str) -> int:
        """Count the owner's items that joined a canonical product."""
        row = self._fetchone(
            "SELECT COUNT(id) FROM tracked_items "
            "WHERE owner_id = ? AND canonical_product_id IS NOT NULL",
            (owner_id,),
        )
        return int(row[0]) if row else 0

    def get_product_owners(self, product_id: int) -> set[str] | None:
        """Owners with an item filed under *product_id*.

        Returns ``None`` when the canonical product does not exist.
        """
        with self._lock:
            exists = self._fetchone(
                "SELECT id FROM canonical_products WHERE id = ?",
                (product_id,),
            )
            if exists is None:
                return None
            rows = self._fetchall(
                "SELECT DISTINCT owner_id FROM tracked_items "
                "WHERE canonical_product_id = ?",
                (product_id,),
            )
        return {str(r[0]) for r in rows}

    # ── Items ────────────────────────────────────────────

    def add_item(
        self,
        owner_id: str,
        url: str,
        name: str,
        price_native: Decimal,
        price_base: Decimal,
        currency_code: str,
        canonical_product_id: int | None = None,
        recorded_at: datetime | None = None,
    ) -> TrackedItem:
        """Insert an item with its first history entry and bill its slot.

        A new canonical product is created when none is given. The
        insert, the initial history row and the ``url_used`` increment
        commit together.
        """
        ts = (recorded_at or datetime.now()).isoformat()
        with self._transaction() as cur:
            dup = cur.execute(
                "SELECT id FROM tracked_items "
                "WHERE owner_id = ? AND url = ?",
                (owner_id, url),
            ).fetchone()
            if dup is not None:
                raise DuplicateItemError(
                    f"{owner_id} already tracks {url}"
                )
            if canonical_product_id is None:
                cur.execute(
                    "INSERT INTO canonical_products (created_at) "
                    "VALUES (?)",
                    (ts,),
                )
                canonical_product_id = cur.lastrowid
            cur.execute(
                "INSERT INTO tracked_items "
                "(owner_id, canonical_product_id, name, url, "
                " latest_price, price_base, currency, "
                " created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    owner_id, canonical_product_id, name, url,
                    str(price_native), str(price_base),
                    currency_code, ts, ts,
                ),
            )
            item_id = cur.lastrowid
            cur.execute(
                "INSERT INTO price_history "
                "(tracked_item_id, price, price_base, currency, "
                " recorded_at) VALUES (?, ?, ?, ?, ?)",
                (
                    item_id, str(price_native), str(price_base),
                    currency_code, ts,
                ),
            )
            cur.execute(
                "UPDATE owners SET url_used = url_used + 1 "
                "WHERE id = ?",
                (owner_id,),
            )
            if cur.rowcount == 0:
                raise OwnerNotFoundError(owner_id)

        logger.info(
            "Added item #%s for %s: %s", item_id, owner_id, url,
        )
        item = self.get_item(int(item_id or 0))
        if item is None:
            raise PersistenceError(f"Tracked item {item_id} vanished")
        return item

    def get_item(self, item_id: int) -> TrackedItem | None:
        """Load one item by id."""
        row = self._fetchone(
            f"SELECT {_ITEM_COLUMNS} FROM tracked_items WHERE id = ?",
            (item_id,),
        )
        return _row_to_item(row) if row else None

    def list_items(self, owner_id: str) -> list[TrackedItem]:
        """All items for one owner, oldest first."""
        rows = self._fetchall(
            f"SELECT {_ITEM_COLUMNS} FROM tracked_items "
            "WHERE owner_id = ? ORDER BY id",
            (owner_id,),
        )
        return [_row_to_item(r) for r in rows]

    def list_tracked_with_url(self) -> list[TrackedItem]:
        """Every item with a non-empty URL, in insertion order.

        Raises:
            RepositoryUnavailableError: If the table cannot be read.
        """
        try:
            rows = self._fetchall(
                f"SELECT {_ITEM_COLUMNS} FROM tracked_items "
                "WHERE TRIM(url) <> '' ORDER BY id",
            )
        except sqlite3.Error as exc:
            raise RepositoryUnavailableError(str(exc)) from exc
        return [_row_to_item(r) for r in rows]

    def update_item(self, item_id: int, fields: dict[str, Any]) -> None:
        """Update selected TrackedItem attributes of one row."""
        with self._transaction() as cur:
            self._update_item(cur, item_id, fields)

    def _update_item(
        self,
        cur: sqlite3.Cursor,
        item_id: int,
        fields: dict[str, Any],
    ) -> None:
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise ValueError(
                f"Cannot update fields: {', '.join(sorted(unknown))}"
            )
        if not fields:
            return
        assignments = ", ".join(f"{_UPDATABLE[k]} = ?" for k in fields)
        cur.execute(
            f"UPDATE tracked_items SET {assignments} WHERE id = ?",
            (*(_to_db(v) for v in fields.values()), item_id),
        )
        if cur.rowcount == 0:
            raise PersistenceError(f"Tracked item {item_id} not found")

    # ── History ──────────────────────────────────────────

    def append_history(self, entry: PriceHistoryEntry) -> None:
        """Append one immutable history row."""
        with self._transaction() as cur:
            self._insert_history(cur, entry)

    @staticmethod
    def _insert_history(
        cur: sqlite3.Cursor, entry: PriceHistoryEntry,
    ) -> None:
        cur.execute(
            "INSERT INTO price_history "
            "(tracked_item_id, price, price_base, currency, recorded_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                entry.tracked_item_id,
                str(entry.price_native),
                str(entry.price_base),
                entry.currency_code,
                entry.recorded_at.isoformat(),
            ),
        )

    def record_price_change(
        self,
        entry: PriceHistoryEntry,
        fields: dict[str, Any],
    ) -> None:
        """Append *entry* and update its item in one transaction."""
        with self._transaction() as cur:
            self._insert_history(cur, entry)
            self._update_item(cur, entry.tracked_item_id, fields)

    def get_price_history(self, item_id: int) -> list[PriceHistoryEntry]:
        """Return all history rows for an item, oldest first."""
        rows = self._fetchall(
            "SELECT tracked_item_id, price, currency, price_base, "
            "       recorded_at "
            "FROM price_history WHERE tracked_item_id = ? "
            "ORDER BY recorded_at ASC, id ASC",
            (item_id,),
        )
        return [
            PriceHistoryEntry(
                tracked_item_id=r[0],
                price_native=Decimal(r[1]),
                currency_code=r[2],
                price_base=Decimal(r[3]),
                recorded_at=datetime.fromisoformat(r[4]),
            )
            for r in rows
        ]

    def get_latest_changes(self, owner_id: str) -> list[dict[str, object]]:
        """Compare the two newest history rows of each owner's item.

        Items with fewer than two rows, or whose base price moved by
        less than 0.01%, are left out.
        """
        changes: list[dict[str, object]] = []
        for item in self.list_items(owner_id):
            rows = self._fetchall(
                "SELECT price_base, recorded_at FROM price_history "
                "WHERE tracked_item_id = ? "
                "ORDER BY recorded_at DESC, id DESC LIMIT 2",
                (item.id,),
            )
            if len(rows) < 2:
                continue
            new_price = Decimal(rows[0][0])
            old_price = Decimal(rows[1][0])
            difference = new_price - old_price
            percent = (
                difference / old_price * 100
                if old_price > 0
                else Decimal("0")
            )
            if abs(percent) < _MIN_CHANGE_PERCENT:
                continue
            changes.append({
                "item_id": item.id,
                "name": item.name,
                "url": item.url,
                "old_price": old_price,
                "new_price": new_price,
                "difference": difference,
                "difference_percent": round(percent, 2),
                "recorded_at": rows[0][1],
            })
        return changes
