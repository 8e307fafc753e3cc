"""
LLM-backed product intelligence: search, market analysis, price prediction
and single-URL lookups.

Every operation follows the same path: build prompt, take a slot from the
shared quota, stream the response, extract JSON, validate into a typed model.
When any of those steps fails, a deterministic fallback computed from the
inputs is returned instead (``fetch_by_url`` returns ``None``).
"""

import json
import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from pricewatch.agents.site_config import platform_from_url, platform_search_url
from pricewatch.agents.upstream_client import UpstreamClient
from pricewatch.core.errors import EmptyInput, PriceWatchError, QuotaExceeded
from pricewatch.models import (
    Action,
    Availability,
    BestDeal,
    MarketAnalysis,
    MarketTrend,
    Platform,
    PricePrediction,
    PriceRange,
    ProductListing,
)
from pricewatch.utils.json_extract import extract_json_array, extract_json_object
from pricewatch.utils.rate_limiter import QuotaTracker, gemini_quota_tracker

logger = logging.getLogger(__name__)

# Errors that are turned into fallback results
RECOVERABLE_ERRORS = (PriceWatchError, ValidationError)


def _dump_listings(listings: List[ProductListing]) -> str:
    return json.dumps([listing.model_dump(mode="json", exclude_none=True) for listing in listings], indent=2)


class ProductIntelligenceService:
    """Prompts Gemini for product data and insights, with typed fallbacks."""

    def __init__(self, client: Optional[UpstreamClient] = None, quota: Optional[QuotaTracker] = None):
        self.client = client or UpstreamClient()
        self.quota = quota or gemini_quota_tracker

    async def _generate(self, prompt: str) -> str:
        if not self.quota.try_acquire():
            raise QuotaExceeded(self.quota.remaining())
        return await self.client.call(prompt)

    async def search_across_platforms(self, query: str) -> List[ProductListing]:
        """
        Find offers for ``query`` on the supported platforms.

        Args:
            query: Free-text product query

        Returns:
            At least one ProductListing; a single out-of-stock placeholder
            when the model could not be reached or understood
        """
        prompt = f"""Search for "{query}" on Amazon India, Flipkart, Myntra, Meesho and one more e-commerce website that provides a cheap selling
price for the same product.

For each platform where this product is available, provide:
- Exact product title
- Current price in INR
- Original price (if discounted)
- Availability status
- Seller name
- Rating (out of 5)
- Number of reviews
- Delivery information
- Product category
- Brand name
- Key features (top 3-5)
- Product URL (realistic format)

Return ONLY a JSON array with this exact structure:
[
  {{
    "title": "Product Title",
    "brand": "Brand Name",
    "category": "Category",
    "price": 1599,
    "original_price": 1999,
    "discount_percent": 20,
    "availability": "in_stock",
    "seller": "Seller Name",
    "rating": 4.2,
    "review_count": 1523,
    "delivery_note": "Free delivery by Tomorrow",
    "platform": "amazon",
    "features": ["Feature 1", "Feature 2"],
    "source_url": "https://amazon.in/product-url"
  }}
]

Important:
- Use realistic Indian pricing
- Include at least 2-3 platforms where available
- Use platform names: "amazon", "flipkart", "myntra", "meesho", "nykaa", "ajio"
- availability is one of "in_stock", "out_of_stock", "limited_stock"
- Return valid JSON only, no additional text"""

        try:
            text = await self._generate(prompt)
            items = extract_json_array(text)
            listings = self._parse_listings(items, query)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"❌ Error searching products for '{query}': {e}")
            return self._fallback_results(query)

        if not listings:
            logger.warning(f"⚠️ Model returned no usable listings for '{query}'")
            return self._fallback_results(query)

        logger.info(f"🔍 Found {len(listings)} listings for '{query}'")
        return listings

    def _parse_listings(self, items: List[Any], query: str) -> List[ProductListing]:
        listings = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                listing = ProductListing.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping invalid listing {item.get('title', '?')!r}: {e.error_count()} errors")
                continue
            if not listing.source_url:
                listing.source_url = platform_search_url(listing.platform, query)
            listings.append(listing)
        return listings

    async def analyze_market(self, listings: List[ProductListing]) -> MarketAnalysis:
        """
        Produce pricing intelligence for a set of listings.

        Raises:
            EmptyInput: If ``listings`` is empty
        """
        if not listings:
            raise EmptyInput("No products to analyze")

        prompt = f"""Analyze this market data for pricing intelligence:

Products: {_dump_listings(listings)}

Provide market analysis with:
1. Average price across platforms
2. Price range (min/max)
3. Best deal identification with reasoning
4. No-cost EMI offer (check for platforms which specifically mention no cost EMI for that product, generally expensive items
have this offer, also mention 2-3 banks offering the no cost EMI feature; leave it out if you cannot find one)
5. Market trend analysis
6. Purchase recommendation (buy_now/wait/monitor)
7. Confidence level (0-100)
8. Key insights about pricing patterns

Consider factors like:
- Price variations between platforms
- Discount patterns
- Delivery dates
- Stock availability

Return ONLY JSON with this structure:
{{
  "average_price": 1750,
  "price_range": {{"min": 1299, "max": 2199}},
  "best_deal": {{"platform": "flipkart", "price": 1299, "reason": "Lowest price with good seller rating"}},
  "no_cost_emi_offer": {{"platform": "amazon", "reason": "ICICI bank is offering this service as mentioned in the offers section"}},
  "market_trend": "falling",
  "recommended_action": "buy_now",
  "confidence": 85,
  "insights": ["Price dropped 15% this week", "High demand product", "Limited stock on best deal"]
}}"""

        try:
            text = await self._generate(prompt)
            return MarketAnalysis.model_validate(extract_json_object(text))
        except RECOVERABLE_ERRORS as e:
            logger.error(f"❌ Error analyzing market: {e}")
            return self._fallback_analysis(listings)

    async def predict_price_trends(
        self,
        listings: List[ProductListing],
        history: Optional[Any] = None,
    ) -> PricePrediction:
        """Predict the price range for the coming month from current listings."""
        history_block = f"Historical Data: {json.dumps(history, default=str)}" if history else ""
        prompt = f"""Predict price trends for this product based on current market data:

Current Products: {_dump_listings(listings[:3])}
{history_block}

Consider factors:
- Current price variations
- Seasonal trends in India
- Festival/sale seasons
- Product category behavior
- Market competition

Predict:
1. Price range for next month (during festive seasons prices generally dip by 5-10% on phones and 10-20% on laptops;
make an assumption about dips and rises from the current date, with a realistic rationale behind it)
2. Confidence level
3. Key factors affecting price
4. Best time to buy recommendation

Return ONLY JSON:
{{
  "next_period_range": {{"min": 1150, "max": 1500}},
  "confidence": 75,
  "factors": ["Upcoming sale season", "High competition", "Stock levels"],
  "best_time_to_buy": "Wait for next week's sale"
}}"""

        try:
            text = await self._generate(prompt)
            return PricePrediction.model_validate(extract_json_object(text))
        except RECOVERABLE_ERRORS as e:
            logger.error(f"❌ Error predicting trends: {e}")
            return self._fallback_prediction(listings)

    async def fetch_by_url(self, url: str) -> Optional[ProductListing]:
        """
        Resolve a single product page.

        Returns:
            ProductListing with the platform inferred from ``url``, or None
            if the product could not be resolved
        """
        platform = platform_from_url(url)

        prompt = f"""Extract detailed product information from this {platform.value} URL: {url}

Provide current product details:
- Title, brand, category
- Current price in INR
- Original price if discounted
- Availability status
- Seller information
- Ratings and reviews
- Key features
- Delivery information

Return ONLY JSON with this structure:
{{
  "title": "Product Title",
  "brand": "Brand",
  "category": "Category",
  "price": 1599,
  "availability": "in_stock",
  "platform": "{platform.value}",
  "source_url": "{url}"
}}"""

        try:
            text = await self._generate(prompt)
            data = extract_json_object(text)
            data.update(platform=platform.value, source_url=url)
            return ProductListing.model_validate(data)
        except RECOVERABLE_ERRORS as e:
            logger.error(f"❌ Error extracting product from URL {url}: {e}")
            return None

    def _fallback_results(self, query: str) -> List[ProductListing]:
        return [
            ProductListing(
                title=f"{query} - Product Not Found",
                price=0,
                availability=Availability.OUT_OF_STOCK,
                platform=Platform.UNKNOWN,
                source_url=platform_search_url(Platform.UNKNOWN, query),
            )
        ]

    def _fallback_analysis(self, listings: List[ProductListing]) -> MarketAnalysis:
        priced = [listing for listing in listings if listing.price > 0]
        prices = [listing.price for listing in priced]
        average = sum(prices) / len(prices) if prices else 0.0
        lowest = min(prices) if prices else 0.0
        cheapest = min(priced, key=lambda listing: listing.price) if priced else listings[0]

        return MarketAnalysis(
            average_price=average,
            price_range=PriceRange(min=lowest, max=max(prices) if prices else 0.0),
            best_deal=BestDeal(
                platform=cheapest.platform.value,
                price=lowest,
                reason="Lowest available price",
            ),
            market_trend=MarketTrend.STABLE,
            recommended_action=Action.MONITOR,
            confidence=50,
            insights=["Limited data available for analysis"],
        )

    def _fallback_prediction(self, listings: List[ProductListing]) -> PricePrediction:
        average = sum(listing.price for listing in listings) / len(listings) if listings else 0.0

        return PricePrediction(
            next_period_range=PriceRange(min=round(average * 0.8), max=round(average * 1.2)),
            confidence=40,
            factors=["Limited historical data", "Market volatility"],
            best_time_to_buy="Monitor for better data",
        )
