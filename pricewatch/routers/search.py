"""
Search API router - handles product search endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from pricewatch.core.errors import NoProductsFound, UserLimitExceeded, WorkflowFailed
from pricewatch.dependencies import check_search_limit, limit_exceeded_detail
from pricewatch.models import SearchRequest, SearchResponse
from pricewatch.services.price_intelligence_service import search_and_analyze

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
async def search_products(request: SearchRequest, user_id: str = Depends(check_search_limit)):
    """
    Search for a product across e-commerce platforms and analyze the market.

    This endpoint runs the price intelligence workflow:
    1. Weekly user limit check
    2. Product search across platforms
    3. Market analysis
    4. Price trend prediction
    5. Purchase recommendation

    A recent identical search by the same user is returned from the cache.

    Args:
        request: Product search request with the query
        user_id: Authenticated caller (daily limit already checked)

    Returns:
        SearchResponse with listings, AI insights and the workflow trace

    Raises:
        HTTPException: 429 on a search limit, 404 when nothing was found,
            500 for other failures
    """
    try:
        return await search_and_analyze(request.query, user_id)
    except UserLimitExceeded as e:
        raise HTTPException(status_code=429, detail=limit_exceeded_detail(e))
    except WorkflowFailed as e:
        if isinstance(e.cause, UserLimitExceeded):
            raise HTTPException(status_code=429, detail=limit_exceeded_detail(e.cause, stage=e.stage))
        status_code = 404 if isinstance(e.cause, NoProductsFound) else 500
        raise HTTPException(
            status_code=status_code,
            detail={"success": False, "stage": e.stage, "message": e.message},
        )
    except Exception as e:
        logger.exception(f"Search for '{request.query}' failed")
        raise HTTPException(status_code=500, detail=str(e))
