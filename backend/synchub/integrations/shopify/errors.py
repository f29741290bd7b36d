"""Shopify（Store）集成层异常，全部继承 UpstreamError。"""

from synchub.core.errors import UpstreamError


class ShopifyError(UpstreamError):
    """Base for all Shopify errors."""

class ShopifyClientError(ShopifyError):
    """Network/timeout after retries, or a non-retryable 4xx."""

class ShopifyServerError(ShopifyError):
    """5xx after retries."""

class ShopifyRateLimitError(ShopifyError):
    """429 still throttled after retries."""

class ShopifyPayloadError(ShopifyError):
    """Response body missing the expected resource."""
