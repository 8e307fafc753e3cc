"""
Watchlist service - named groups of a user's tracked products.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pricewatch.core.errors import ProductsNotOwned
from pricewatch.models import (
    ProductSort,
    Watchlist,
    WatchlistCreate,
    WatchlistProducts,
    WatchlistUpdate,
)
from pricewatch.services import price_intelligence_service

logger = logging.getLogger(__name__)


async def create_watchlist(user_id: str, request: WatchlistCreate) -> Watchlist:
    """
    Create a watchlist; a new default watchlist replaces the previous default.

    Raises:
        WatchlistNameTaken: If the user already has a watchlist with this name
    """
    database = price_intelligence_service.get_database()

    now = datetime.now(timezone.utc)
    watchlist = Watchlist(
        watchlist_id=str(uuid.uuid4()),
        user_id=user_id,
        name=request.name,
        description=request.description or None,
        is_default=request.is_default,
        created_at=now,
        updated_at=now,
    )
    await database.create_watchlist(watchlist)
    logger.info(f"📋 Created watchlist '{watchlist.name}' for user {user_id}")
    return watchlist


async def list_watchlists(user_id: str) -> List[Watchlist]:
    return await price_intelligence_service.get_database().list_watchlists(user_id)


async def update_watchlist(user_id: str, watchlist_id: str, update: WatchlistUpdate) -> Optional[Watchlist]:
    """
    Returns:
        The updated watchlist, or None if the user has no such watchlist

    Raises:
        WatchlistNameTaken: If the new name is used by another of the user's watchlists
    """
    database = price_intelligence_service.get_database()

    watchlist = await database.get_watchlist(user_id, watchlist_id)
    if not watchlist:
        return None

    changes = update.model_dump(exclude_unset=True)
    if changes.get("name"):
        watchlist.name = changes["name"]
    if "description" in changes:
        watchlist.description = changes["description"] or None
    if changes.get("is_default") is not None:
        watchlist.is_default = changes["is_default"]
    watchlist.updated_at = datetime.now(timezone.utc)

    if not await database.update_watchlist(watchlist):
        return None
    return watchlist


async def delete_watchlist(user_id: str, watchlist_id: str) -> bool:
    return await price_intelligence_service.get_database().delete_watchlist(user_id, watchlist_id)


async def add_products(user_id: str, watchlist_id: str, product_ids: List[str]) -> Optional[Watchlist]:
    """
    Add tracked products to a watchlist.

    Returns:
        The watchlist with its new contents, or None if the user has no such watchlist

    Raises:
        ProductsNotOwned: If any id is not one of the user's tracked products
    """
    database = price_intelligence_service.get_database()

    if not await database.get_watchlist(user_id, watchlist_id):
        return None

    unique_ids = list(dict.fromkeys(product_ids))
    if await database.count_owned_products(user_id, unique_ids) != len(unique_ids):
        raise ProductsNotOwned("One or more products not found or do not belong to the user")

    await database.add_watchlist_products(watchlist_id, unique_ids)
    return await database.get_watchlist(user_id, watchlist_id)


async def remove_product(user_id: str, watchlist_id: str, product_id: str) -> Optional[Watchlist]:
    """Remove a product from a watchlist; None if the user has no such watchlist."""
    database = price_intelligence_service.get_database()

    if not await database.get_watchlist(user_id, watchlist_id):
        return None

    await database.remove_watchlist_product(watchlist_id, product_id)
    return await database.get_watchlist(user_id, watchlist_id)


async def get_watchlist_products(
    user_id: str,
    watchlist_id: str,
    page: int = 1,
    limit: int = 20,
    sort_by: ProductSort = ProductSort.CREATED_AT,
) -> Optional[WatchlistProducts]:
    """One page of the products in a watchlist; None if the user has no such watchlist."""
    database = price_intelligence_service.get_database()

    watchlist = await database.get_watchlist(user_id, watchlist_id)
    if not watchlist:
        return None

    products, total = await database.list_tracked_products(
        user_id, page, limit, sort_by=sort_by, watchlist_id=watchlist_id
    )
    return WatchlistProducts(
        watchlist=watchlist,
        products=price_intelligence_service.build_product_page(products, total, page, limit),
    )
