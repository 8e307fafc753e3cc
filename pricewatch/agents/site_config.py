"""
Platform lookup table: host substrings and search URL templates.
"""

from typing import Dict
from urllib.parse import quote

from pricewatch.models import Platform


# Checked in order; the first host substring found in the URL wins.
PLATFORM_CONFIGS: Dict[Platform, Dict[str, str]] = {
    Platform.AMAZON: {
        "host": "amazon",
        "search_url_template": "https://www.amazon.in/s?k={query}",
    },
    Platform.FLIPKART: {
        "host": "flipkart",
        "search_url_template": "https://www.flipkart.com/search?q={query}",
    },
    Platform.MYNTRA: {
        "host": "myntra",
        "search_url_template": "https://www.myntra.com/{query}",
    },
    Platform.MEESHO: {
        "host": "meesho",
        "search_url_template": "https://www.meesho.com/search?q={query}",
    },
    Platform.NYKAA: {
        "host": "nykaa",
        "search_url_template": "https://www.nykaa.com/search/result/?q={query}",
    },
    Platform.AJIO: {
        "host": "ajio",
        "search_url_template": "https://www.ajio.com/search/?text={query}",
    },
}

DEFAULT_SEARCH_URL_TEMPLATE = "https://www.google.com/search?q={query}"


def platform_from_url(url: str) -> Platform:
    """
    Infer the platform from a product URL.

    Args:
        url: Product page URL

    Returns:
        The matching Platform, or Platform.UNKNOWN
    """
    lowered = (url or "").lower()
    for platform, config in PLATFORM_CONFIGS.items():
        if config["host"] in lowered:
            return platform
    return Platform.UNKNOWN


def platform_search_url(platform: Platform, query: str) -> str:
    """Build a search URL for ``query`` on ``platform`` (Google for unknown platforms)."""
    config = PLATFORM_CONFIGS.get(platform)
    template = config["search_url_template"] if config else DEFAULT_SEARCH_URL_TEMPLATE
    return template.format(query=quote(query))


def list_supported_platforms() -> list:
    """Names of all platforms with a lookup entry."""
    return [platform.value for platform in PLATFORM_CONFIGS]
