"""
Tracked products API router.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from pricewatch.core.errors import TrackingFailed
from pricewatch.dependencies import get_current_user_id
from pricewatch.models import (
    PriceHistory,
    ProductSort,
    TrackedProduct,
    TrackedProductList,
    TrackedProductUpdate,
    TrackProductRequest,
)
from pricewatch.services import price_intelligence_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])

PRODUCT_NOT_FOUND = "Product not found or access denied"


@router.post("/track", response_model=TrackedProduct, status_code=201)
async def track_product(request: TrackProductRequest, user_id: str = Depends(get_current_user_id)):
    """
    Start tracking a product from one or more platform URLs.

    Raises:
        HTTPException: 400 if none of the URLs could be resolved
    """
    try:
        return await price_intelligence_service.track_product(user_id, request)
    except TrackingFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Tracking '{request.title}' failed")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("", response_model=TrackedProductList)
async def list_products(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    category: Optional[str] = Query(default=None, description='Category filter; "all" for every category'),
    sort_by: ProductSort = Query(default=ProductSort.CREATED_AT),
    user_id: str = Depends(get_current_user_id),
):
    """List the caller's tracked products, sorted descending by ``sort_by``."""
    return await price_intelligence_service.list_tracked_products(user_id, page, limit, category, sort_by)


@router.put("/{product_id}", response_model=TrackedProduct)
async def update_product(product_id: str, update: TrackedProductUpdate,
                         user_id: str = Depends(get_current_user_id)):
    """Edit a tracked product's details or the platforms it is tracked on."""
    product = await price_intelligence_service.update_tracked_product(user_id, product_id, update)
    if not product:
        raise HTTPException(status_code=404, detail=PRODUCT_NOT_FOUND)
    return product


@router.delete("/{product_id}")
async def delete_product(product_id: str, user_id: str = Depends(get_current_user_id)) -> Dict[str, Any]:
    if not await price_intelligence_service.delete_tracked_product(user_id, product_id):
        raise HTTPException(status_code=404, detail=PRODUCT_NOT_FOUND)
    return {"success": True, "message": "Product removed from tracking"}


@router.get("/{product_id}/history", response_model=PriceHistory)
async def product_history(
    product_id: str,
    platform: Optional[str] = Query(default=None),
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
):
    """
    Price history of a tracked product.

    Args:
        platform: Restrict to one platform
        days: How far back to look
    """
    history = await price_intelligence_service.get_price_history(user_id, product_id, platform, days)
    if not history:
        raise HTTPException(status_code=404, detail=PRODUCT_NOT_FOUND)
    return history
