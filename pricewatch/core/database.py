"""
SQLite persistence for users, search quotas, cached searches, tracked
products and watchlists.

Every public method runs its blocking sqlite3 work in the default executor
with its own connection. Quota changes are single statements so concurrent
requests cannot lose updates.
"""

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from pricewatch.core.errors import WatchlistNameTaken
from pricewatch.models import (
    AIInsights,
    CachedSearch,
    ProductListing,
    ProductSort,
    TrackedProduct,
    User,
    UserSearchQuota,
    Watchlist,
)

# Fixed-width UTC timestamps so SQL string comparison matches time order
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS users
    (
        user_id TEXT PRIMARY KEY,
        email TEXT,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS search_quotas
    (
        user_id TEXT NOT NULL,
        gate TEXT NOT NULL,
        search_count INTEGER NOT NULL DEFAULT 0,
        resets_at TEXT,
        PRIMARY KEY (user_id, gate)
    );
    CREATE TABLE IF NOT EXISTS product_searches
    (
        search_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        query TEXT NOT NULL,
        normalized_query TEXT NOT NULL,
        results TEXT NOT NULL,
        ai_insights TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_product_searches_lookup
        ON product_searches (user_id, normalized_query, created_at);
    CREATE TABLE IF NOT EXISTS tracked_products
    (
        product_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        brand TEXT,
        category TEXT,
        notes TEXT,
        platforms TEXT NOT NULL,
        selected_platforms TEXT NOT NULL,
        tracking_start_date TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_tracked_products_user
        ON tracked_products (user_id, tracking_start_date);
    CREATE TABLE IF NOT EXISTS watchlists
    (
        watchlist_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        is_default INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (user_id, name)
    );
    CREATE TABLE IF NOT EXISTS watchlist_products
    (
        watchlist_id TEXT NOT NULL,
        product_id TEXT NOT NULL,
        added_at TEXT NOT NULL,
        PRIMARY KEY (watchlist_id, product_id)
    );
"""


_TRACKED_COLUMNS = (
    "product_id, user_id, title, brand, category, notes, platforms, selected_platforms, tracking_start_date"
)

_WATCHLIST_COLUMNS = (
    "w.watchlist_id, w.user_id, w.name, w.description, w.is_default, w.created_at, w.updated_at, "
    "(SELECT COUNT(*) FROM watchlist_products wp WHERE wp.watchlist_id = w.watchlist_id)"
)

# Whitelisted ORDER BY columns
_PRODUCT_SORT_COLUMNS = {
    ProductSort.CREATED_AT: "tracking_start_date",
    ProductSort.TITLE: "title",
    ProductSort.CATEGORY: "category",
}


class Database:
    """Async facade over a SQLite database file."""

    def __init__(self, db_file: str):
        self.db_file = db_file

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_file, timeout=30)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    async def _run(self, func, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, func, *args)

    async def initialize(self):
        """Create tables and indexes if they do not exist."""

        def db_init():
            with self._connect() as conn:
                conn.executescript(_SCHEMA)

        await self._run(db_init)

    # -- users ---------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        def db_read():
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT user_id, email, created_at FROM users WHERE user_id = ?",
                    (user_id,)
                ).fetchone()
            if row:
                return User(user_id=row[0], email=row[1], created_at=_from_db(row[2]))
            return None

        return await self._run(db_read)

    async def get_or_create_user(self, user_id: str, email: Optional[str] = None) -> User:
        def db_write():
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR IGNORE INTO users (user_id, email, created_at) VALUES (?, ?, ?)",
                    (user_id, email, _to_db(datetime.now(timezone.utc)))
                )

        await self._run(db_write)
        return await self.get_user(user_id)

    # -- search quotas -------------------------------------------------------

    @staticmethod
    def _read_quota(conn: sqlite3.Connection, user_id: str, gate: str) -> UserSearchQuota:
        row = conn.execute(
            "SELECT search_count, resets_at FROM search_quotas WHERE user_id = ? AND gate = ?",
            (user_id, gate)
        ).fetchone()
        if not row:
            return UserSearchQuota(user_id=user_id, gate=gate)
        return UserSearchQuota(user_id=user_id, gate=gate, search_count=row[0], resets_at=_from_db(row[1]))

    async def get_search_quota(self, user_id: str, gate: str) -> UserSearchQuota:
        def db_read():
            with self._connect() as conn:
                return self._read_quota(conn, user_id, gate)

        return await self._run(db_read)

    async def set_search_quota(self, user_id: str, gate: str, search_count: int,
                               resets_at: Optional[datetime]) -> None:
        def db_write():
            with self._connect() as conn:
                conn.execute(
                    "REPLACE INTO search_quotas (user_id, gate, search_count, resets_at) VALUES (?, ?, ?, ?)",
                    (user_id, gate, search_count, _to_db(resets_at))
                )

        await self._run(db_write)

    async def reset_expired_search_quota(self, user_id: str, gate: str, now: datetime) -> bool:
        """
        Zero the counter and clear the reset time if the reset time has passed.

        Returns:
            True if a reset happened
        """

        def db_write():
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE search_quotas SET search_count = 0, resets_at = NULL
                    WHERE user_id = ? AND gate = ? AND resets_at IS NOT NULL AND resets_at < ?
                    """,
                    (user_id, gate, _to_db(now))
                )
                return cursor.rowcount > 0

        return await self._run(db_write)

    async def reserve_search_quota(self, user_id: str, gate: str, limit: int,
                                   first_resets_at: datetime) -> Optional[UserSearchQuota]:
        """
        Add one search if the counter is still below ``limit``.

        Check and increment are one statement, so concurrent reservations
        can never push the counter past ``limit``. ``first_resets_at``
        becomes the reset time when the counter moves from 0 to 1.

        Returns:
            The updated quota, or None if the limit was already reached
        """

        def db_write():
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO search_quotas (user_id, gate, search_count, resets_at) VALUES (?, ?, 1, ?)
                    ON CONFLICT (user_id, gate) DO UPDATE SET
                        resets_at = CASE WHEN search_quotas.search_count = 0
                                         THEN excluded.resets_at ELSE search_quotas.resets_at END,
                        search_count = search_quotas.search_count + 1
                    WHERE search_quotas.search_count < ?
                    """,
                    (user_id, gate, _to_db(first_resets_at), limit)
                )
                if cursor.rowcount == 0:
                    return None
                return self._read_quota(conn, user_id, gate)

        return await self._run(db_write)

    async def release_search_quota(self, user_id: str, gate: str) -> None:
        """Give back one reserved search."""

        def db_write():
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE search_quotas SET search_count = search_count - 1
                    WHERE user_id = ? AND gate = ? AND search_count > 0
                    """,
                    (user_id, gate)
                )

        await self._run(db_write)

    # -- cached searches -----------------------------------------------------

    async def find_recent_search(self, user_id: str, query: str, within: timedelta) -> Optional[CachedSearch]:
        """Newest search by ``user_id`` for ``query`` younger than ``within``."""
        since = datetime.now(timezone.utc) - within

        def db_read():
            with self._connect() as conn:
                return conn.execute(
                    """
                    SELECT search_id, query, results, ai_insights, created_at FROM product_searches
                    WHERE user_id = ? AND normalized_query = ? AND created_at >= ?
                    ORDER BY created_at DESC LIMIT 1
                    """,
                    (user_id, _normalize_query(query), _to_db(since))
                ).fetchone()

        row = await self._run(db_read)
        if not row:
            return None
        return CachedSearch(
            search_id=row[0],
            user_id=user_id,
            query=row[1],
            results=[ProductListing.model_validate(item) for item in json.loads(row[2])],
            ai_insights=AIInsights.model_validate_json(row[3]),
            created_at=_from_db(row[4]),
        )

    async def save_search(self, search: CachedSearch) -> None:
        def db_write():
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO product_searches
                        (search_id, user_id, query, normalized_query, results, ai_insights, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        search.search_id,
                        search.user_id,
                        search.query,
                        _normalize_query(search.query),
                        json.dumps([listing.model_dump(mode="json") for listing in search.results]),
                        search.ai_insights.model_dump_json(),
                        _to_db(search.created_at),
                    )
                )

        await self._run(db_write)

    # -- tracked products ----------------------------------------------------

    @staticmethod
    def _tracked_from_row(row: tuple) -> TrackedProduct:
        return TrackedProduct(
            product_id=row[0],
            user_id=row[1],
            title=row[2],
            brand=row[3],
            category=row[4],
            notes=row[5],
            platforms=json.loads(row[6]),
            selected_platforms=json.loads(row[7]),
            tracking_start_date=_from_db(row[8]),
        )

    async def save_tracked_product(self, product: TrackedProduct) -> None:
        platforms = {name: data.model_dump(mode="json") for name, data in product.platforms.items()}

        def db_write():
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO tracked_products
                        (product_id, user_id, title, brand, category, notes,
                         platforms, selected_platforms, tracking_start_date)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        product.product_id,
                        product.user_id,
                        product.title,
                        product.brand,
                        product.category,
                        product.notes,
                        json.dumps(platforms),
                        json.dumps(product.selected_platforms),
                        _to_db(product.tracking_start_date),
                    )
                )

        await self._run(db_write)

    async def get_tracked_product(self, user_id: str, product_id: str) -> Optional[TrackedProduct]:
        def db_read():
            with self._connect() as conn:
                return conn.execute(
                    f"SELECT {_TRACKED_COLUMNS} FROM tracked_products WHERE product_id = ? AND user_id = ?",
                    (product_id, user_id)
                ).fetchone()

        row = await self._run(db_read)
        return self._tracked_from_row(row) if row else None

    async def update_tracked_product(self, product: TrackedProduct) -> bool:
        """Overwrite the editable fields of ``product``; False if it no longer exists."""
        platforms = {name: data.model_dump(mode="json") for name, data in product.platforms.items()}

        def db_write():
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE tracked_products
                    SET title = ?, brand = ?, category = ?, notes = ?, platforms = ?, selected_platforms = ?
                    WHERE product_id = ? AND user_id = ?
                    """,
                    (
                        product.title,
                        product.brand,
                        product.category,
                        product.notes,
                        json.dumps(platforms),
                        json.dumps(product.selected_platforms),
                        product.product_id,
                        product.user_id,
                    )
                )
                return cursor.rowcount > 0

        return await self._run(db_write)

    async def delete_tracked_product(self, user_id: str, product_id: str) -> bool:
        """Delete a product and drop it from every watchlist; False if not found."""

        def db_write():
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM tracked_products WHERE product_id = ? AND user_id = ?",
                    (product_id, user_id)
                )
                if cursor.rowcount == 0:
                    return False
                conn.execute("DELETE FROM watchlist_products WHERE product_id = ?", (product_id,))
                return True

        return await self._run(db_write)

    async def count_owned_products(self, user_id: str, product_ids: List[str]) -> int:
        """How many of ``product_ids`` are tracked products of ``user_id``."""
        if not product_ids:
            return 0
        placeholders = ", ".join("?" for _ in product_ids)

        def db_read():
            with self._connect() as conn:
                return conn.execute(
                    f"SELECT COUNT(*) FROM tracked_products WHERE user_id = ? AND product_id IN ({placeholders})",
                    (user_id, *product_ids)
                ).fetchone()[0]

        return await self._run(db_read)

    async def list_tracked_products(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        category: Optional[str] = None,
        sort_by: ProductSort = ProductSort.CREATED_AT,
        watchlist_id: Optional[str] = None,
    ) -> Tuple[List[TrackedProduct], int]:
        """
        One page of a user's tracked products, sorted descending by ``sort_by``.

        Args:
            category: Only products in this category
            watchlist_id: Only products in this watchlist

        Returns:
            Tuple of (products, total number of matching products)
        """
        conditions = ["user_id = ?"]
        params: list = [user_id]
        if category:
            conditions.append("category = ?")
            params.append(category)
        if watchlist_id:
            conditions.append("product_id IN (SELECT product_id FROM watchlist_products WHERE watchlist_id = ?)")
            params.append(watchlist_id)
        where = " AND ".join(conditions)
        order = _PRODUCT_SORT_COLUMNS[ProductSort(sort_by)]
        offset = (page - 1) * limit

        def db_read():
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_TRACKED_COLUMNS} FROM tracked_products WHERE {where}
                    ORDER BY {order} DESC, tracking_start_date DESC LIMIT ? OFFSET ?
                    """,
                    (*params, limit, offset)
                ).fetchall()
                total = conn.execute(
                    f"SELECT COUNT(*) FROM tracked_products WHERE {where}",
                    params
                ).fetchone()[0]
            return rows, total

        rows, total = await self._run(db_read)
        return [self._tracked_from_row(row) for row in rows], total

    # -- watchlists ----------------------------------------------------------

    @staticmethod
    def _watchlist_from_row(row: tuple, product_ids: Optional[List[str]] = None) -> Watchlist:
        return Watchlist(
            watchlist_id=row[0],
            user_id=row[1],
            name=row[2],
            description=row[3],
            is_default=bool(row[4]),
            created_at=_from_db(row[5]),
            updated_at=_from_db(row[6]),
            product_count=row[7],
            product_ids=product_ids or [],
        )

    @staticmethod
    def _clear_default(conn: sqlite3.Connection, user_id: str, except_id: str):
        conn.execute(
            "UPDATE watchlists SET is_default = 0 WHERE user_id = ? AND is_default = 1 AND watchlist_id != ?",
            (user_id, except_id)
        )

    async def create_watchlist(self, watchlist: Watchlist) -> None:
        """
        Raises:
            WatchlistNameTaken: If the user already has a watchlist with this name
        """

        def db_write():
            try:
                with self._connect() as conn:
                    if watchlist.is_default:
                        self._clear_default(conn, watchlist.user_id, watchlist.watchlist_id)
                    conn.execute(
                        """
                        INSERT INTO watchlists
                            (watchlist_id, user_id, name, description, is_default, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            watchlist.watchlist_id,
                            watchlist.user_id,
                            watchlist.name,
                            watchlist.description,
                            int(watchlist.is_default),
                            _to_db(watchlist.created_at),
                            _to_db(watchlist.updated_at),
                        )
                    )
            except sqlite3.IntegrityError as e:
                raise WatchlistNameTaken(watchlist.name) from e

        await self._run(db_write)

    async def update_watchlist(self, watchlist: Watchlist) -> bool:
        """
        Overwrite name, description and default flag; False if not found.

        Raises:
            WatchlistNameTaken: If another watchlist of the user has this name
        """

        def db_write():
            try:
                with self._connect() as conn:
                    if watchlist.is_default:
                        self._clear_default(conn, watchlist.user_id, watchlist.watchlist_id)
                    cursor = conn.execute(
                        """
                        UPDATE watchlists SET name = ?, description = ?, is_default = ?, updated_at = ?
                        WHERE watchlist_id = ? AND user_id = ?
                        """,
                        (
                            watchlist.name,
                            watchlist.description,
                            int(watchlist.is_default),
                            _to_db(watchlist.updated_at),
                            watchlist.watchlist_id,
                            watchlist.user_id,
                        )
                    )
                    return cursor.rowcount > 0
            except sqlite3.IntegrityError as e:
                raise WatchlistNameTaken(watchlist.name) from e

        return await self._run(db_write)

    async def get_watchlist(self, user_id: str, watchlist_id: str) -> Optional[Watchlist]:
        def db_read():
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {_WATCHLIST_COLUMNS} FROM watchlists w WHERE w.watchlist_id = ? AND w.user_id = ?",
                    (watchlist_id, user_id)
                ).fetchone()
                if not row:
                    return None
                product_ids = [
                    r[0] for r in conn.execute(
                        "SELECT product_id FROM watchlist_products WHERE watchlist_id = ? ORDER BY added_at, rowid",
                        (watchlist_id,)
                    )
                ]
            return self._watchlist_from_row(row, product_ids)

        return await self._run(db_read)

    async def list_watchlists(self, user_id: str) -> List[Watchlist]:
        """The user's watchlists, default first, then newest first."""

        def db_read():
            with self._connect() as conn:
                return conn.execute(
                    f"""
                    SELECT {_WATCHLIST_COLUMNS} FROM watchlists w WHERE w.user_id = ?
                    ORDER BY w.is_default DESC, w.created_at DESC
                    """,
                    (user_id,)
                ).fetchall()

        rows = await self._run(db_read)
        return [self._watchlist_from_row(row) for row in rows]

    async def delete_watchlist(self, user_id: str, watchlist_id: str) -> bool:
        def db_write():
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM watchlists WHERE watchlist_id = ? AND user_id = ?",
                    (watchlist_id, user_id)
                )
                if cursor.rowcount == 0:
                    return False
                conn.execute("DELETE FROM watchlist_products WHERE watchlist_id = ?", (watchlist_id,))
                return True

        return await self._run(db_write)

    async def add_watchlist_products(self, watchlist_id: str, product_ids: List[str]) -> None:
        """Add products to a watchlist; products already in it are left as they are."""
        added_at = _to_db(datetime.now(timezone.utc))

        def db_write():
            with self._connect() as conn:
                conn.executemany(
                    "INSERT OR IGNORE INTO watchlist_products (watchlist_id, product_id, added_at) VALUES (?, ?, ?)",
                    [(watchlist_id, product_id, added_at) for product_id in product_ids]
                )

        await self._run(db_write)

    async def remove_watchlist_product(self, watchlist_id: str, product_id: str) -> bool:
        def db_write():
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM watchlist_products WHERE watchlist_id = ? AND product_id = ?",
                    (watchlist_id, product_id)
                )
                return cursor.rowcount > 0

        return await self._run(db_write)
