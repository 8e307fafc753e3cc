"""
Shared fixtures: a scripted chat model, a recording sleep, a fake clock and a
throwaway SQLite database.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from langchain_core.messages import AIMessageChunk

from pricewatch.agents.product_intelligence import ProductIntelligenceService
from pricewatch.agents.upstream_client import UpstreamClient
from pricewatch.core.database import Database
from pricewatch.models import Availability, PlatformTracking, PricePoint, TrackedProduct
from pricewatch.utils.rate_limiter import QuotaTracker


LISTINGS = [
    {
        "title": "Boat Airdopes 141",
        "brand": "boAt",
        "price": 1299,
        "original_price": 4490,
        "availability": "in_stock",
        "rating": 4.1,
        "platform": "amazon",
        "source_url": "https://www.amazon.in/dp/B09N3ZNHTY",
    },
    {
        "title": "Boat Airdopes 141",
        "brand": "boAt",
        "price": 1499,
        "availability": "In Stock",
        "platform": "Flipkart",
    },
]


class FakeLLM:
    """
    Chat model stand-in. Each ``astream`` call plays the next scripted reply;
    the last reply is repeated once the script runs out. A reply is either a
    list of chunk contents or an exception to raise.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    async def astream(self, messages):
        self.prompts.append(messages[0].content)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        for content in reply:
            yield AIMessageChunk(content=content)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def listings_text():
    """A model reply carrying the sample listings inside commentary."""
    return f"Here are the offers I found:\n```json\n{json.dumps(LISTINGS)}\n```\nPrices as of today."


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_client(recording_sleep):
    """Build an UpstreamClient over a FakeLLM playing ``replies``."""

    def factory(replies, **kwargs):
        kwargs.setdefault("max_retries", 3)
        kwargs.setdefault("base_delay", 1.0)
        kwargs.setdefault("timeout", 5)
        return UpstreamClient(llm=FakeLLM(replies), sleep=recording_sleep, **kwargs)

    return factory


@pytest.fixture
def make_intelligence(make_client):
    """Build a ProductIntelligenceService with single-attempt calls and a roomy quota."""

    def factory(replies, quota=None):
        client = make_client(replies, max_retries=1)
        return ProductIntelligenceService(client=client, quota=quota or QuotaTracker(1000, 10000))

    return factory


@pytest.fixture
def database(tmp_path):
    db = Database(str(tmp_path / "pricewatch-test.db"))
    asyncio.run(db.initialize())
    return db


@pytest.fixture
def save_tracked(database):
    """Store a tracked product directly; ``history`` is a list of (days ago, price) per platform."""

    def factory(product_id, title="Boat Airdopes 141", user_id="user-1", category=None,
                started_days_ago=0, history=None):
        now = datetime.now(timezone.utc)
        history = history or {"amazon": [(0, 1299)]}
        platforms = {
            name: PlatformTracking(
                url=f"https://example.com/{name}/{product_id}",
                current_price=points[-1][1],
                availability=Availability.IN_STOCK,
                price_history=[PricePoint(date=now - timedelta(days=ago), price=price) for ago, price in points],
                last_scraped=now,
            )
            for name, points in history.items()
        }
        product = TrackedProduct(
            product_id=product_id,
            user_id=user_id,
            title=title,
            category=category,
            platforms=platforms,
            selected_platforms=list(platforms),
            tracking_start_date=now - timedelta(days=started_days_ago),
        )
        asyncio.run(database.save_tracked_product(product))
        return product

    return factory
