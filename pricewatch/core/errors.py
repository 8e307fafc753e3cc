"""
Exceptions raised by the price intelligence pipeline.

Upstream and parsing errors are absorbed by ProductIntelligenceService into
fallback results. Quota denials and unrecoverable pipeline states abort the
workflow and reach the HTTP layer.
"""

from datetime import datetime
from typing import Dict, Optional


class PriceWatchError(Exception):
    """Base class for all application errors."""


class QuotaExceeded(PriceWatchError):
    """The shared Gemini budget (per minute or per day) is used up."""

    def __init__(self, remaining: Dict[str, int]):
        self.remaining = remaining
        super().__init__(f"Rate limit exceeded. Remaining: {remaining}")


class UpstreamExhausted(PriceWatchError):
    """Every attempt of a generative request failed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gemini streaming request failed after {attempts} attempts: {last_error}")


class ResponseParseError(PriceWatchError):
    """The model response could not be turned into JSON."""


class NoJsonFound(ResponseParseError):
    """No bracketed JSON span exists in the response text."""


class MalformedJson(ResponseParseError):
    """A JSON span was found but could not be decoded into the expected shape."""


class UserNotFound(PriceWatchError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class UserLimitExceeded(PriceWatchError):
    """A per-user search quota denied the request."""

    def __init__(self, limit: int, resets_at: Optional[datetime], message: Optional[str] = None):
        self.limit = limit
        self.resets_at = resets_at
        super().__init__(message or f"You have exceeded your search limit of {limit} queries.")


class EmptyInput(PriceWatchError):
    """An analysis operation was called without any listings."""


class NoProductsFound(PriceWatchError):
    """The search stage produced no listings at all."""


class WorkflowFailed(PriceWatchError):
    """A workflow stage failed; carries the stage name and the original error."""

    def __init__(self, stage: str, message: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.message = message
        self.cause = cause
        super().__init__(f"{stage}: {message}")


class TrackingFailed(PriceWatchError):
    """None of the URLs given for tracking could be resolved."""


class WatchlistNameTaken(PriceWatchError):
    def __init__(self, name: str):
        self.name = name
        super().__init__("Watchlist with this name already exists")


class ProductsNotOwned(PriceWatchError):
    """Some product ids do not exist or belong to another user."""
