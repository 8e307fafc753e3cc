"""
Watchlists API router.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query

from pricewatch.core.errors import ProductsNotOwned, WatchlistNameTaken
from pricewatch.dependencies import get_current_user_id
from pricewatch.models import (
    ProductSort,
    Watchlist,
    WatchlistCreate,
    WatchlistProducts,
    WatchlistProductsRequest,
    WatchlistUpdate,
)
from pricewatch.services import watchlist_service

router = APIRouter(prefix="/watchlists", tags=["watchlists"])

WATCHLIST_NOT_FOUND = "Watchlist not found or access denied"


@router.post("", response_model=Watchlist, status_code=201)
async def create_watchlist(request: WatchlistCreate, user_id: str = Depends(get_current_user_id)):
    try:
        return await watchlist_service.create_watchlist(user_id, request)
    except WatchlistNameTaken as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("", response_model=List[Watchlist])
async def list_watchlists(user_id: str = Depends(get_current_user_id)):
    """The caller's watchlists, default first."""
    return await watchlist_service.list_watchlists(user_id)


@router.put("/{watchlist_id}", response_model=Watchlist)
async def update_watchlist(watchlist_id: str, update: WatchlistUpdate,
                           user_id: str = Depends(get_current_user_id)):
    try:
        watchlist = await watchlist_service.update_watchlist(user_id, watchlist_id, update)
    except WatchlistNameTaken as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not watchlist:
        raise HTTPException(status_code=404, detail=WATCHLIST_NOT_FOUND)
    return watchlist


@router.delete("/{watchlist_id}")
async def delete_watchlist(watchlist_id: str, user_id: str = Depends(get_current_user_id)) -> Dict[str, Any]:
    if not await watchlist_service.delete_watchlist(user_id, watchlist_id):
        raise HTTPException(status_code=404, detail=WATCHLIST_NOT_FOUND)
    return {"success": True, "message": "Watchlist deleted"}


@router.post("/{watchlist_id}/products", response_model=Watchlist)
async def add_products(watchlist_id: str, request: WatchlistProductsRequest,
                       user_id: str = Depends(get_current_user_id)):
    """
    Add tracked products to a watchlist.

    Raises:
        HTTPException: 404 for an unknown watchlist, 400 if a product is not the caller's
    """
    try:
        watchlist = await watchlist_service.add_products(user_id, watchlist_id, request.product_ids)
    except ProductsNotOwned as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not watchlist:
        raise HTTPException(status_code=404, detail=WATCHLIST_NOT_FOUND)
    return watchlist


@router.delete("/{watchlist_id}/products/{product_id}", response_model=Watchlist)
async def remove_product(watchlist_id: str, product_id: str, user_id: str = Depends(get_current_user_id)):
    watchlist = await watchlist_service.remove_product(user_id, watchlist_id, product_id)
    if not watchlist:
        raise HTTPException(status_code=404, detail=WATCHLIST_NOT_FOUND)
    return watchlist


@router.get("/{watchlist_id}/products", response_model=WatchlistProducts)
async def watchlist_products(
    watchlist_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: ProductSort = Query(default=ProductSort.CREATED_AT),
    user_id: str = Depends(get_current_user_id),
):
    result = await watchlist_service.get_watchlist_products(user_id, watchlist_id, page, limit, sort_by)
    if not result:
        raise HTTPException(status_code=404, detail=WATCHLIST_NOT_FOUND)
    return result
