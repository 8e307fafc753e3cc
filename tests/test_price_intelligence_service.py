"""
Tests for the service layer: caching, quota accounting and product tracking.
"""

import asyncio

import pytest

from pricewatch.core.errors import TrackingFailed, UserLimitExceeded, WorkflowFailed
from pricewatch.models import ProductSort, SearchResponse, TrackedProductUpdate, TrackProductRequest
from pricewatch.services import price_intelligence_service as service


@pytest.fixture
def start_service(database):
    """Initialize the service over the test database with the given intelligence."""

    def factory(intelligence):
        asyncio.run(service.initialize(database=database, intelligence=intelligence))
        asyncio.run(database.get_or_create_user("user-1"))
        return service

    yield factory
    asyncio.run(service.shutdown())


def test_requires_initialization():
    assert service.is_ready() is False
    with pytest.raises(RuntimeError):
        asyncio.run(service.search_and_analyze("phone", "user-1"))


def test_search_counts_both_gates_and_caches(start_service, make_intelligence, listings_text, database):
    intelligence = make_intelligence([[listings_text]])
    start_service(intelligence)

    first = asyncio.run(service.search_and_analyze("Boat Airdopes", "user-1"))

    assert first.success and not first.cached
    assert len(first.results) == 2
    assert len(first.trace) == 5
    assert first.ai_insights.recommendation is not None
    assert asyncio.run(database.get_search_quota("user-1", "daily")).search_count == 1
    assert asyncio.run(database.get_search_quota("user-1", "weekly")).search_count == 1

    prompts_sent = len(intelligence.client.llm.prompts)
    second = asyncio.run(service.search_and_analyze("  boat   airdopes ", "user-1"))

    assert second.cached is True
    assert second.search_id == first.search_id
    assert second.cached_at is not None
    assert len(intelligence.client.llm.prompts) == prompts_sent, "cache hits make no model calls"
    assert asyncio.run(database.get_search_quota("user-1", "daily")).search_count == 1, "cache hits are not counted"


def test_failed_workflow_is_not_counted(start_service, database):
    class NoResults:
        async def search_across_platforms(self, query):
            return []

    start_service(NoResults())

    with pytest.raises(WorkflowFailed) as exc_info:
        asyncio.run(service.search_and_analyze("phone", "user-1"))

    assert exc_info.value.stage == "search_products"
    assert asyncio.run(database.get_search_quota("user-1", "daily")).search_count == 0
    assert asyncio.run(database.get_search_quota("user-1", "weekly")).search_count == 0


def test_track_product_keeps_resolved_platforms(start_service, make_intelligence):
    reply = '{"title": "Levi\'s 511", "price": 2199, "availability": "in_stock", "seller": "Levis Store"}'
    intelligence = make_intelligence([[reply], RuntimeError("page not found")])
    start_service(intelligence)
    request = TrackProductRequest(
        title="  Levi's 511 Slim Jeans ",
        urls=["https://www.myntra.com/jeans/levis/511/buy", "https://www.ajio.com/levis-511/p/1"],
        brand="Levi's",
    )

    product = asyncio.run(service.track_product("user-1", request))

    assert product.title == "Levi's 511 Slim Jeans"
    assert product.selected_platforms == ["myntra"]
    tracking = product.platforms["myntra"]
    assert tracking.current_price == 2199
    assert tracking.seller == "Levis Store"
    assert len(tracking.price_history) == 1

    page = asyncio.run(service.list_tracked_products("user-1", page=1, limit=10))
    assert page.total_products == 1
    assert page.products[0].product_id == product.product_id
    assert page.has_more is False


def test_track_product_fails_when_nothing_resolves(start_service, make_intelligence):
    start_service(make_intelligence([RuntimeError("blocked")]))
    request = TrackProductRequest(title="Phone", urls=["https://www.amazon.in/dp/X"])

    with pytest.raises(TrackingFailed):
        asyncio.run(service.track_product("user-1", request))
    assert asyncio.run(service.list_tracked_products("user-1")).total_products == 0


def _search_concurrently(*queries):
    async def run():
        return await asyncio.gather(
            *(service.search_and_analyze(query, "user-1") for query in queries), return_exceptions=True
        )

    return asyncio.run(run())


def test_concurrent_searches_never_pass_the_weekly_limit(start_service, make_intelligence, listings_text,
                                                         database):
    start_service(make_intelligence([[listings_text]]))
    asyncio.run(database.set_search_quota("user-1", "weekly", 99, None))

    results = _search_concurrently("phone a", "phone b")

    completed = [r for r in results if isinstance(r, SearchResponse)]
    denied = [r for r in results if isinstance(r, WorkflowFailed)]
    assert len(completed) == 1
    assert len(denied) == 1
    assert denied[0].stage == "check_user_limits"
    assert isinstance(denied[0].cause, UserLimitExceeded)
    assert asyncio.run(database.get_search_quota("user-1", "weekly")).search_count == 100
    assert asyncio.run(database.get_search_quota("user-1", "daily")).search_count == 1, \
        "the denied search gives its daily slot back"


def test_concurrent_searches_never_pass_the_daily_limit(start_service, make_intelligence, listings_text,
                                                        database):
    start_service(make_intelligence([[listings_text]]))
    asyncio.run(database.set_search_quota("user-1", "daily", 2, None))

    results = _search_concurrently("tv one", "tv two", "tv three")

    assert len([r for r in results if isinstance(r, SearchResponse)]) == 1
    assert len([r for r in results if isinstance(r, UserLimitExceeded)]) == 2
    assert asyncio.run(database.get_search_quota("user-1", "daily")).search_count == 3
    assert asyncio.run(database.get_search_quota("user-1", "weekly")).search_count == 1


def test_list_filters_by_category_and_sorts(start_service, make_intelligence, save_tracked):
    start_service(make_intelligence([["{}"]]))
    save_tracked("p1", title="Apple iPhone 15", category="phones", started_days_ago=3)
    save_tracked("p2", title="Zebronics Speaker", category="audio", started_days_ago=2)
    save_tracked("p3", title="Mi Redmi 13", category="phones", started_days_ago=1)
    save_tracked("other", title="Someone else's", user_id="user-2", category="phones")

    newest_first = asyncio.run(service.list_tracked_products("user-1"))
    assert [p.product_id for p in newest_first.products] == ["p3", "p2", "p1"]

    phones = asyncio.run(service.list_tracked_products("user-1", category="phones"))
    assert phones.total_products == 2
    assert [p.product_id for p in phones.products] == ["p3", "p1"]

    everything = asyncio.run(service.list_tracked_products("user-1", category="all"))
    assert everything.total_products == 3

    by_title = asyncio.run(service.list_tracked_products("user-1", sort_by=ProductSort.TITLE))
    assert [p.product_id for p in by_title.products] == ["p2", "p3", "p1"]

    second_page = asyncio.run(service.list_tracked_products("user-1", page=2, limit=2))
    assert [p.product_id for p in second_page.products] == ["p1"]
    assert second_page.total_pages == 2
    assert second_page.has_more is False


def test_update_toggles_active_platforms(start_service, make_intelligence, save_tracked):
    start_service(make_intelligence([["{}"]]))
    save_tracked("p1", history={"amazon": [(0, 1299)], "flipkart": [(0, 1499)]})

    update = TrackedProductUpdate(
        title="  Boat Airdopes 141 ANC ",
        notes="gift",
        selected_platforms=["flipkart", "nykaa", "flipkart"],
    )
    product = asyncio.run(service.update_tracked_product("user-1", "p1", update))

    assert product.title == "Boat Airdopes 141 ANC"
    assert product.notes == "gift"
    assert product.selected_platforms == ["flipkart"]
    assert product.platforms["flipkart"].is_active is True
    assert product.platforms["amazon"].is_active is False

    stored = asyncio.run(service.get_database().get_tracked_product("user-1", "p1"))
    assert stored.selected_platforms == ["flipkart"]
    assert stored.platforms["amazon"].is_active is False


def test_update_leaves_unset_fields_alone(start_service, make_intelligence, save_tracked):
    start_service(make_intelligence([["{}"]]))
    save_tracked("p1", category="audio")

    product = asyncio.run(service.update_tracked_product("user-1", "p1", TrackedProductUpdate(notes="later")))

    assert product.category == "audio"
    assert product.title == "Boat Airdopes 141"
    assert product.selected_platforms == ["amazon"]


def test_update_and_delete_are_scoped_to_the_owner(start_service, make_intelligence, save_tracked):
    start_service(make_intelligence([["{}"]]))
    save_tracked("p1", user_id="user-2")

    assert asyncio.run(service.update_tracked_product("user-1", "p1", TrackedProductUpdate(notes="x"))) is None
    assert asyncio.run(service.delete_tracked_product("user-1", "p1")) is False
    assert asyncio.run(service.delete_tracked_product("user-2", "p1")) is True
    assert asyncio.run(service.list_tracked_products("user-2")).total_products == 0


def test_price_history_window_and_platform(start_service, make_intelligence, save_tracked):
    start_service(make_intelligence([["{}"]]))
    save_tracked("p1", history={
        "amazon": [(45, 1599), (10, 1399), (1, 1299)],
        "flipkart": [(2, 1499)],
    })

    history = asyncio.run(service.get_price_history("user-1", "p1"))
    assert history.days == 30
    assert [p.price for p in history.price_history["amazon"]] == [1399, 1299]
    assert [p.price for p in history.price_history["flipkart"]] == [1499]

    amazon_week = asyncio.run(service.get_price_history("user-1", "p1", platform="amazon", days=7))
    assert list(amazon_week.price_history) == ["amazon"]
    assert [p.price for p in amazon_week.price_history["amazon"]] == [1299]

    untracked = asyncio.run(service.get_price_history("user-1", "p1", platform="nykaa"))
    assert untracked.price_history == {}

    assert asyncio.run(service.get_price_history("user-1", "missing")) is None
