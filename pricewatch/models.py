"""
Pydantic models and data structures for the price intelligence application.
"""

import operator
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from pydantic import BaseModel, BeforeValidator, Field, field_validator


class Platform(str, Enum):
    """Supported e-commerce platforms."""
    AMAZON = "amazon"
    FLIPKART = "flipkart"
    MYNTRA = "myntra"
    MEESHO = "meesho"
    NYKAA = "nykaa"
    AJIO = "ajio"
    UNKNOWN = "unknown"


class Availability(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED_STOCK = "limited_stock"


class MarketTrend(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class Action(str, Enum):
    """Purchase recommendation."""
    BUY_NOW = "buy_now"
    WAIT = "wait"
    MONITOR = "monitor"


def _clamp_confidence(value: Any) -> Any:
    # Models often answer 85.5 or 120; keep the value inside 0-100
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(0, min(100, int(round(value))))
    return value


Confidence = Annotated[int, BeforeValidator(_clamp_confidence), Field(ge=0, le=100)]


class ProductListing(BaseModel):
    """One platform's offer for a product."""
    title: str = Field(..., min_length=1)
    brand: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    discount_percent: Optional[float] = None
    availability: Availability = Availability.IN_STOCK
    seller: Optional[str] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    review_count: Optional[int] = Field(default=None, ge=0)
    delivery_note: Optional[str] = None
    image_url: Optional[str] = None
    source_url: str = ""
    platform: Platform = Platform.UNKNOWN
    features: List[str] = Field(default_factory=list)

    @field_validator("platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value: Any) -> Any:
        if value is None:
            return Platform.UNKNOWN
        name = str(value).strip().lower()
        try:
            return Platform(name)
        except ValueError:
            return Platform.UNKNOWN

    @field_validator("availability", mode="before")
    @classmethod
    def _normalize_availability(cls, value: Any) -> Any:
        if value is None:
            return Availability.IN_STOCK
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_").replace(" ", "_")
        return value

    @field_validator("features", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return value or []


class PriceRange(BaseModel):
    min: float
    max: float


class BestDeal(BaseModel):
    platform: str
    price: float
    reason: str = ""


class EmiOffer(BaseModel):
    platform: str
    reason: str = ""


class MarketAnalysis(BaseModel):
    average_price: float
    price_range: PriceRange
    best_deal: BestDeal
    no_cost_emi_offer: Optional[EmiOffer] = None
    market_trend: MarketTrend = MarketTrend.STABLE
    recommended_action: Action = Action.MONITOR
    confidence: Confidence
    insights: List[str] = Field(default_factory=list)


class PricePrediction(BaseModel):
    next_period_range: PriceRange
    confidence: Confidence
    factors: List[str] = Field(default_factory=list)
    best_time_to_buy: str = ""


class PriceInsights(BaseModel):
    current_range: str
    predicted_range: str
    trend: MarketTrend
    confidence: Confidence


class Recommendation(BaseModel):
    """Purchase advice derived from a market analysis and a price prediction."""
    action: Action
    rationale: str
    confidence: Confidence
    target_price: float
    platform: Optional[str] = None
    time_frame: Optional[str] = None
    urgency: str = "medium"
    alternatives: List[str] = Field(default_factory=list)
    savings: float = 0.0
    price_insights: Optional[PriceInsights] = None


class AIInsights(BaseModel):
    market_analysis: Optional[MarketAnalysis] = None
    price_prediction: Optional[PricePrediction] = None
    recommendation: Optional[Recommendation] = None


class User(BaseModel):
    user_id: str
    email: Optional[str] = None
    created_at: datetime


class UserSearchQuota(BaseModel):
    """Search counter of one user for one quota gate."""
    user_id: str
    gate: str
    search_count: int = 0
    resets_at: Optional[datetime] = None


class CachedSearch(BaseModel):
    search_id: str
    user_id: str
    query: str
    results: List[ProductListing]
    ai_insights: AIInsights
    created_at: datetime


class SearchRequest(BaseModel):
    """Request model for product search."""
    query: str = Field(..., max_length=200)

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Search query is required")
        if len(value) < 2:
            raise ValueError("Search query must be between 2 and 200 characters")
        return value


class SearchResponse(BaseModel):
    """Response model for product search."""
    success: bool
    message: str
    search_id: str
    cached: bool = False
    results: List[ProductListing]
    ai_insights: AIInsights = Field(default_factory=AIInsights)
    trace: List[str] = []
    cached_at: Optional[datetime] = None


def _strip_text(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class TrackProductRequest(BaseModel):
    """Request model for tracking a product on one or more platforms."""
    title: str = Field(..., min_length=1, max_length=300)
    urls: List[str] = Field(..., min_length=1, max_length=10)
    brand: Optional[str] = Field(default=None, max_length=100)
    category: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)


class TrackedProductUpdate(BaseModel):
    """Partial update of a tracked product; only fields present in the request change."""
    title: Optional[str] = Field(default=None, min_length=2, max_length=500)
    brand: Optional[str] = Field(default=None, max_length=100)
    category: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)
    selected_platforms: Optional[List[str]] = None

    @field_validator("title", "brand", "category", "notes", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)


class ProductSort(str, Enum):
    """Sort keys for product listings (always newest/highest first)."""
    CREATED_AT = "created_at"
    TITLE = "title"
    CATEGORY = "category"


class PricePoint(BaseModel):
    date: datetime
    price: float
    source: str = "scraped"
    availability: Optional[Availability] = None


class PlatformTracking(BaseModel):
    url: str
    current_price: float
    availability: Availability
    seller: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_history: List[PricePoint] = []
    last_scraped: datetime
    is_active: bool = True


class TrackedProduct(BaseModel):
    product_id: str
    user_id: str
    title: str
    brand: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    platforms: Dict[str, PlatformTracking]
    selected_platforms: List[str]
    tracking_start_date: datetime


class TrackedProductList(BaseModel):
    products: List[TrackedProduct]
    page: int
    limit: int
    total_products: int
    total_pages: int
    has_more: bool


class PriceHistory(BaseModel):
    """Price points per platform recorded since ``date_from``."""
    product_id: str
    title: str
    price_history: Dict[str, List[PricePoint]]
    date_from: datetime
    date_to: datetime
    days: int


class WatchlistCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_default: bool = False

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)


class WatchlistUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_default: Optional[bool] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)


class Watchlist(BaseModel):
    """A named group of the user's tracked products; at most one is the default."""
    watchlist_id: str
    user_id: str
    name: str
    description: Optional[str] = None
    is_default: bool = False
    product_ids: List[str] = []
    product_count: int = 0
    created_at: datetime
    updated_at: datetime


class WatchlistProductsRequest(BaseModel):
    product_ids: List[str] = Field(..., min_length=1, max_length=100)


class WatchlistProducts(BaseModel):
    watchlist: Watchlist
    products: TrackedProductList


class WorkflowState(TypedDict, total=False):
    """State object for the LangGraph workflow."""
    query: str
    user_id: str
    quota_reserved: bool  # the weekly gate holds a slot for this run
    search_results: List[ProductListing]
    market_analysis: Optional[MarketAnalysis]
    price_prediction: Optional[PricePrediction]
    recommendation: Optional[Recommendation]
    trace: Annotated[List[str], operator.add]  # each stage appends one message
    error: Optional[str]
    failed_stage: Optional[str]
    failure: Optional[BaseException]
