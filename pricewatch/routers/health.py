"""
Health check API router.
"""

from typing import Any, Dict

from fastapi import APIRouter

from pricewatch import __version__
from pricewatch.agents.site_config import list_supported_platforms
from pricewatch.config import settings
from pricewatch.services.price_intelligence_service import get_health_status
from pricewatch.utils.rate_limiter import gemini_quota_tracker


router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Dictionary with health status and version information
    """
    return await get_health_status()


@router.get("/rate-limit-status")
async def rate_limit_status() -> Dict[str, Any]:
    """
    Check current shared quota status for the Gemini API.

    Returns:
        Dictionary with rate limiting information
    """
    return {
        **gemini_quota_tracker.get_stats(),
        "user_search_limit": settings.SEARCH_LIMIT,
        "user_search_window_hours": settings.SEARCH_LIMIT_WINDOW_HOURS,
        "weekly_search_limit": settings.WEEKLY_SEARCH_LIMIT,
    }


@router.get("/")
async def root() -> Dict[str, Any]:
    """
    Root endpoint with API information.

    Returns:
        Dictionary with API metadata and available endpoints
    """
    return {
        "title": settings.API_TITLE,
        "version": __version__,
        "description": "Price intelligence backend: product search, market analysis and price tracking",
        "endpoints": {
            "search": "/search",
            "track": "/products/track",
            "products": "/products",
            "watchlists": "/watchlists",
            "health": "/health",
            "rate_limit_status": "/rate-limit-status",
            "docs": "/docs",
            "redoc": "/redoc"
        },
        "platforms": list_supported_platforms(),
    }
