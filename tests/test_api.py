"""
HTTP tests for the FastAPI app, with the model replaced by a scripted fake.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from pricewatch.agents.product_intelligence import ProductIntelligenceService
from pricewatch.main import app
from pricewatch.services import price_intelligence_service

HEADERS = {"X-User-Id": "shopper-42"}


@pytest.fixture
def make_api(database):
    """Start the app over the test database; ``intelligence`` answers all model calls."""
    clients = []

    def factory(intelligence):
        # The lifespan's own initialize() becomes a no-op
        asyncio.run(price_intelligence_service.initialize(database=database, intelligence=intelligence))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)
    asyncio.run(price_intelligence_service.shutdown())


@pytest.fixture
def api(make_api, make_intelligence, listings_text):
    return make_api(make_intelligence([[listings_text]]))


def test_root_lists_platforms(api):
    response = api.get("/")

    assert response.status_code == 200
    assert "amazon" in response.json()["platforms"]
    assert response.json()["endpoints"]["search"] == "/search"


def test_health(api):
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert set(response.json()["gemini_quota"]) == {"per_minute", "per_day"}


def test_rate_limit_status(api):
    body = api.get("/rate-limit-status").json()
    assert body["user_search_limit"] == 3
    assert "max_requests_per_minute" in body


def test_search_requires_identity(api):
    response = api.post("/search", json={"query": "phone"})
    assert response.status_code == 401


def test_search_rejects_blank_query(api):
    response = api.post("/search", json={"query": "   "}, headers=HEADERS)
    assert response.status_code == 422


def test_search_rejects_single_character_query(api):
    response = api.post("/search", json={"query": " a "}, headers=HEADERS)
    assert response.status_code == 422


def test_search_returns_insights_then_cache(api):
    response = api.post("/search", json={"query": "boat airdopes 141"}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["cached"] is False
    assert len(body["results"]) == 2
    assert body["ai_insights"]["market_analysis"]["best_deal"]["price"] == 1299
    assert body["trace"][-1] == "Recommendations generated: monitor"

    again = api.post("/search", json={"query": "Boat Airdopes 141"}, headers=HEADERS)
    assert again.status_code == 200
    assert again.json()["cached"] is True
    assert again.json()["search_id"] == body["search_id"]


def test_daily_limit_returns_429(api, database):
    resets_at = datetime.now(timezone.utc) + timedelta(hours=3)
    asyncio.run(database.get_or_create_user("shopper-42"))
    asyncio.run(database.set_search_quota("shopper-42", "daily", 3, resets_at))

    response = api.post("/search", json={"query": "phone"}, headers=HEADERS)

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["limit"] == 3
    assert detail["message"] == "You have exceeded your search limit of 3 queries."
    assert datetime.fromisoformat(detail["limit_resets_at"]) == resets_at


def test_weekly_limit_returns_429(api, database):
    asyncio.run(database.get_or_create_user("shopper-42"))
    asyncio.run(database.set_search_quota(
        "shopper-42", "weekly", 100, datetime.now(timezone.utc) + timedelta(days=2)
    ))

    response = api.post("/search", json={"query": "phone"}, headers=HEADERS)

    assert response.status_code == 429
    assert response.json()["detail"]["message"] == "Search limit exceeded. Please wait for weekly reset."
    assert response.json()["detail"]["limit"] == 100
    assert response.json()["detail"]["stage"] == "check_user_limits"


def test_search_with_no_products_returns_404(make_api, make_intelligence):
    class NoResults(ProductIntelligenceService):
        async def search_across_platforms(self, query):
            return []

    api = make_api(NoResults(client=make_intelligence([["[]"]]).client))

    response = api.post("/search", json={"query": "unobtainium"}, headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"]["stage"] == "search_products"


def test_track_and_list_products(make_api, make_intelligence):
    reply = json.dumps({"title": "Redmi Note 13", "price": 16999, "availability": "in_stock"})
    api = make_api(make_intelligence([[reply]]))
    payload = {
        "title": "Redmi Note 13",
        "urls": ["https://www.amazon.in/dp/B0CQPGG8KG", "https://www.flipkart.com/redmi-note-13/p/itm1"],
    }

    response = api.post("/products/track", json=payload, headers=HEADERS)

    assert response.status_code == 201
    assert set(response.json()["platforms"]) == {"amazon", "flipkart"}

    listing = api.get("/products", params={"page": 1, "limit": 5}, headers=HEADERS)
    assert listing.status_code == 200
    assert listing.json()["total_products"] == 1
    assert listing.json()["products"][0]["title"] == "Redmi Note 13"


def test_track_with_unresolvable_urls_returns_400(make_api, make_intelligence):
    api = make_api(make_intelligence([RuntimeError("blocked")]))

    response = api.post(
        "/products/track",
        json={"title": "Phone", "urls": ["https://www.nykaa.com/p/1"]},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Unable to fetch data from any of the provided URLs"


def test_track_rejects_empty_url_list(api):
    response = api.post("/products/track", json={"title": "Phone", "urls": []}, headers=HEADERS)
    assert response.status_code == 422


def test_list_products_with_category_and_sort(api, save_tracked):
    save_tracked("p1", title="Apple iPhone 15", user_id="shopper-42", category="phones", started_days_ago=2)
    save_tracked("p2", title="Zebronics Speaker", user_id="shopper-42", category="audio", started_days_ago=1)

    phones = api.get("/products", params={"category": "phones"}, headers=HEADERS)
    assert phones.status_code == 200
    assert [p["product_id"] for p in phones.json()["products"]] == ["p1"]

    by_title = api.get("/products", params={"category": "all", "sort_by": "title"}, headers=HEADERS)
    assert [p["product_id"] for p in by_title.json()["products"]] == ["p2", "p1"]

    assert api.get("/products", params={"sort_by": "price"}, headers=HEADERS).status_code == 422


def test_update_product_selects_platforms(api, save_tracked):
    save_tracked("p1", user_id="shopper-42", history={"amazon": [(0, 1299)], "flipkart": [(0, 1499)]})

    response = api.put("/products/p1", json={"selected_platforms": ["amazon"], "category": "audio"},
                       headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["selected_platforms"] == ["amazon"]
    assert body["category"] == "audio"
    assert body["platforms"]["flipkart"]["is_active"] is False


def test_update_rejects_short_title(api, save_tracked):
    save_tracked("p1", user_id="shopper-42")
    response = api.put("/products/p1", json={"title": "x"}, headers=HEADERS)
    assert response.status_code == 422


def test_unknown_product_returns_404(api, save_tracked):
    save_tracked("theirs", user_id="someone-else")

    assert api.put("/products/theirs", json={"notes": "mine now"}, headers=HEADERS).status_code == 404
    assert api.delete("/products/theirs", headers=HEADERS).status_code == 404
    response = api.get("/products/theirs/history", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["detail"] == "Product not found or access denied"


def test_delete_product(api, save_tracked):
    save_tracked("p1", user_id="shopper-42")

    response = api.delete("/products/p1", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Product removed from tracking"}
    assert api.get("/products", headers=HEADERS).json()["total_products"] == 0


def test_product_history(api, save_tracked):
    save_tracked("p1", user_id="shopper-42", history={"amazon": [(20, 1399), (3, 1299)], "flipkart": [(1, 1499)]})

    response = api.get("/products/p1/history", params={"platform": "amazon", "days": 7}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["days"] == 7
    assert [p["price"] for p in body["price_history"]["amazon"]] == [1299]
    assert "flipkart" not in body["price_history"]

    assert api.get("/products/p1/history", params={"days": 400}, headers=HEADERS).status_code == 422


def test_watchlist_lifecycle(api, save_tracked):
    save_tracked("p1", user_id="shopper-42")
    save_tracked("p2", title="Redmi Note 13", user_id="shopper-42")
    save_tracked("theirs", user_id="someone-else")

    created = api.post("/watchlists", json={"name": " Diwali ", "is_default": True}, headers=HEADERS)
    assert created.status_code == 201
    watchlist_id = created.json()["watchlist_id"]
    assert created.json()["name"] == "Diwali"

    duplicate = api.post("/watchlists", json={"name": "Diwali"}, headers=HEADERS)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Watchlist with this name already exists"

    foreign = api.post(f"/watchlists/{watchlist_id}/products", json={"product_ids": ["p1", "theirs"]},
                       headers=HEADERS)
    assert foreign.status_code == 400

    added = api.post(f"/watchlists/{watchlist_id}/products", json={"product_ids": ["p1", "p2"]}, headers=HEADERS)
    assert added.status_code == 200
    assert added.json()["product_ids"] == ["p1", "p2"]

    products = api.get(f"/watchlists/{watchlist_id}/products", headers=HEADERS)
    assert products.status_code == 200
    assert products.json()["products"]["total_products"] == 2
    assert products.json()["watchlist"]["product_count"] == 2

    removed = api.delete(f"/watchlists/{watchlist_id}/products/p2", headers=HEADERS)
    assert removed.json()["product_ids"] == ["p1"]

    assert api.delete(f"/watchlists/{watchlist_id}", headers=HEADERS).status_code == 200
    assert api.get("/watchlists", headers=HEADERS).json() == []


def test_new_default_watchlist_replaces_the_old_one(api):
    first = api.post("/watchlists", json={"name": "Gadgets", "is_default": True}, headers=HEADERS).json()
    second = api.post("/watchlists", json={"name": "Fashion", "is_default": True}, headers=HEADERS).json()

    listed = api.get("/watchlists", headers=HEADERS).json()

    assert [w["watchlist_id"] for w in listed] == [second["watchlist_id"], first["watchlist_id"]]
    assert [w["is_default"] for w in listed] == [True, False]


def test_unknown_watchlist_returns_404(api):
    other = {"X-User-Id": "someone-else"}
    watchlist_id = api.post("/watchlists", json={"name": "Private"}, headers=other).json()["watchlist_id"]

    assert api.put(f"/watchlists/{watchlist_id}", json={"name": "Mine"}, headers=HEADERS).status_code == 404
    assert api.get(f"/watchlists/{watchlist_id}/products", headers=HEADERS).status_code == 404
    response = api.delete(f"/watchlists/{watchlist_id}", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["detail"] == "Watchlist not found or access denied"
