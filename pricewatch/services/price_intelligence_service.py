"""
Price intelligence service - main business logic orchestrator.
"""

import asyncio
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pricewatch import __version__
from pricewatch.agents.product_intelligence import ProductIntelligenceService
from pricewatch.config import settings
from pricewatch.core.database import Database
from pricewatch.core.errors import TrackingFailed, WorkflowFailed
from pricewatch.core.user_quota import UserQuotaGate, create_request_gate, create_workflow_gate
from pricewatch.core.workflow import PriceIntelligenceWorkflow
from pricewatch.models import (
    AIInsights,
    CachedSearch,
    PlatformTracking,
    PriceHistory,
    PricePoint,
    ProductSort,
    SearchResponse,
    TrackedProduct,
    TrackedProductList,
    TrackedProductUpdate,
    TrackProductRequest,
    WorkflowState,
)
from pricewatch.utils.rate_limiter import gemini_quota_tracker

logger = logging.getLogger(__name__)


# Global service state
_database: Optional[Database] = None
_intelligence: Optional[ProductIntelligenceService] = None
_request_gate: Optional[UserQuotaGate] = None
_workflow_gate: Optional[UserQuotaGate] = None
_workflow: Optional[PriceIntelligenceWorkflow] = None
_initialized = False


async def initialize(database: Optional[Database] = None,
                     intelligence: Optional[ProductIntelligenceService] = None):
    """Initialize the service and its dependencies."""
    global _database, _intelligence, _request_gate, _workflow_gate, _workflow, _initialized
    if _initialized:
        return

    _database = database or Database(settings.DB_FILE)
    await _database.initialize()
    _intelligence = intelligence or ProductIntelligenceService()
    _request_gate = create_request_gate(_database)
    _workflow_gate = create_workflow_gate(_database)
    _workflow = PriceIntelligenceWorkflow(_intelligence, _workflow_gate, _database)
    _initialized = True


async def shutdown():
    """Drop service state so the next ``initialize`` starts fresh."""
    global _database, _intelligence, _request_gate, _workflow_gate, _workflow, _initialized
    _database = _intelligence = _request_gate = _workflow_gate = _workflow = None
    _initialized = False


def is_ready() -> bool:
    """Check if the service is ready to handle requests."""
    return _initialized and _workflow is not None


def _require_ready():
    if not is_ready():
        raise RuntimeError("Service not initialized. Call initialize() first.")


def get_database() -> Database:
    _require_ready()
    return _database


def get_request_gate() -> UserQuotaGate:
    _require_ready()
    return _request_gate


async def _release_reservations(user_id: str, final_state: WorkflowState):
    await _request_gate.release(user_id)
    if final_state.get("quota_reserved"):
        await _workflow_gate.release(user_id)


async def search_and_analyze(query: str, user_id: str) -> SearchResponse:
    """
    Search for a product and build AI insights, reusing a recent identical search.

    The search holds a slot in the daily and the weekly gate while it runs;
    both are given back if it fails, so only completed searches count.

    Args:
        query: Product query
        user_id: Authenticated user

    Returns:
        SearchResponse with listings, insights and the workflow trace

    Raises:
        RuntimeError: If service is not initialized
        UserLimitExceeded: If the daily allowance is used up
        WorkflowFailed: If a workflow stage failed, including a weekly limit denial
    """
    _require_ready()

    cached = await _database.find_recent_search(user_id, query, timedelta(hours=settings.SEARCH_CACHE_HOURS))
    if cached:
        logger.info(f"♻️ Serving cached search {cached.search_id} for '{query}'")
        return SearchResponse(
            success=True,
            message="Results from recent search",
            search_id=cached.search_id,
            cached=True,
            results=cached.results,
            ai_insights=cached.ai_insights,
            cached_at=cached.created_at,
        )

    await _request_gate.reserve(user_id)
    final_state: WorkflowState = {}
    try:
        start_time = asyncio.get_event_loop().time()
        final_state = await _workflow.run(query, user_id)
        search_time_ms = int((asyncio.get_event_loop().time() - start_time) * 1000)

        if final_state.get("error"):
            logger.warning(f"Workflow for '{query}' stopped at {final_state.get('failed_stage')} after {search_time_ms}ms")
            raise WorkflowFailed(final_state["failed_stage"], final_state["error"], final_state.get("failure"))

        insights = AIInsights(
            market_analysis=final_state["market_analysis"],
            price_prediction=final_state["price_prediction"],
            recommendation=final_state["recommendation"],
        )
        search = CachedSearch(
            search_id=str(uuid.uuid4()),
            user_id=user_id,
            query=query,
            results=final_state["search_results"],
            ai_insights=insights,
            created_at=datetime.now(timezone.utc),
        )
        await _database.save_search(search)
    except Exception:
        await _release_reservations(user_id, final_state)
        raise

    logger.info(f"✅ Search '{query}' completed in {search_time_ms}ms")
    return SearchResponse(
        success=True,
        message="Product search completed",
        search_id=search.search_id,
        results=search.results,
        ai_insights=insights,
        trace=final_state["trace"],
    )


async def track_product(user_id: str, request: TrackProductRequest) -> TrackedProduct:
    """
    Start tracking a product on every platform whose URL can be resolved.

    Raises:
        TrackingFailed: If none of the URLs could be resolved
    """
    _require_ready()

    now = datetime.now(timezone.utc)
    platforms: Dict[str, PlatformTracking] = {}
    for url in request.urls:
        listing = await _intelligence.fetch_by_url(url)
        if not listing:
            logger.warning(f"❌ Failed to resolve {url}")
            continue

        platforms[listing.platform.value] = PlatformTracking(
            url=url,
            current_price=listing.price,
            availability=listing.availability,
            seller=listing.seller,
            rating=listing.rating,
            review_count=listing.review_count,
            price_history=[
                PricePoint(date=now, price=listing.price, source="scraped", availability=listing.availability)
            ],
            last_scraped=now,
        )

    if not platforms:
        raise TrackingFailed("Unable to fetch data from any of the provided URLs")

    product = TrackedProduct(
        product_id=str(uuid.uuid4()),
        user_id=user_id,
        title=request.title.strip(),
        brand=request.brand,
        category=request.category,
        notes=request.notes,
        platforms=platforms,
        selected_platforms=list(platforms),
        tracking_start_date=now,
    )
    await _database.save_tracked_product(product)
    logger.info(f"📌 Tracking '{product.title}' on {', '.join(product.selected_platforms)}")
    return product


def build_product_page(products: List[TrackedProduct], total: int, page: int, limit: int) -> TrackedProductList:
    return TrackedProductList(
        products=products,
        page=page,
        limit=limit,
        total_products=total,
        total_pages=math.ceil(total / limit) if total else 0,
        has_more=page * limit < total,
    )


async def list_tracked_products(
    user_id: str,
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    sort_by: ProductSort = ProductSort.CREATED_AT,
) -> TrackedProductList:
    """List the user's tracked products; ``category`` of None or "all" means every category."""
    _require_ready()

    if category == "all":
        category = None
    products, total = await _database.list_tracked_products(user_id, page, limit, category, sort_by)
    return build_product_page(products, total, page, limit)


async def update_tracked_product(user_id: str, product_id: str,
                                 update: TrackedProductUpdate) -> Optional[TrackedProduct]:
    """
    Apply the fields present in ``update``.

    ``selected_platforms`` keeps only platforms the product is tracked on and
    marks exactly those as active.

    Returns:
        The updated product, or None if the user has no such product
    """
    _require_ready()

    product = await _database.get_tracked_product(user_id, product_id)
    if not product:
        return None

    changes = update.model_dump(exclude_unset=True)
    if changes.get("title"):
        product.title = changes["title"]
    for field in ("brand", "category", "notes"):
        if field in changes:
            setattr(product, field, changes[field])
    if changes.get("selected_platforms") is not None:
        selected = [name for name in dict.fromkeys(changes["selected_platforms"]) if name in product.platforms]
        product.selected_platforms = selected
        for name, tracking in product.platforms.items():
            tracking.is_active = name in selected

    if not await _database.update_tracked_product(product):
        return None
    logger.info(f"✏️ Updated tracked product {product_id}")
    return product


async def delete_tracked_product(user_id: str, product_id: str) -> bool:
    _require_ready()

    deleted = await _database.delete_tracked_product(user_id, product_id)
    if deleted:
        logger.info(f"🗑️ Stopped tracking product {product_id}")
    return deleted


async def get_price_history(user_id: str, product_id: str, platform: Optional[str] = None,
                            days: int = 30) -> Optional[PriceHistory]:
    """
    Price points of the last ``days`` days, per platform.

    Args:
        platform: Only this platform; an untracked platform yields no entries

    Returns:
        PriceHistory, or None if the user has no such product
    """
    _require_ready()

    product = await _database.get_tracked_product(user_id, product_id)
    if not product:
        return None

    now = datetime.now(timezone.utc)
    date_from = now - timedelta(days=days)
    names = [platform] if platform else list(product.platforms)

    history: Dict[str, List[PricePoint]] = {}
    for name in names:
        tracking = product.platforms.get(name)
        if tracking:
            history[name] = [point for point in tracking.price_history if point.date >= date_from]

    return PriceHistory(
        product_id=product.product_id,
        title=product.title,
        price_history=history,
        date_from=date_from,
        date_to=now,
        days=days,
    )


async def get_health_status() -> Dict[str, Any]:
    """
    Get service health status.

    Returns:
        Dictionary with health information
    """
    return {
        "status": "healthy" if is_ready() else "not_ready",
        "version": __version__,
        "initialized": _initialized,
        "workflow_ready": _workflow is not None,
        "gemini_quota": gemini_quota_tracker.remaining(),
    }
