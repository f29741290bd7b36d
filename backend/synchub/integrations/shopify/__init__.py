from .errors import ShopifyError, ShopifyClientError, ShopifyServerError, ShopifyRateLimitError, ShopifyPayloadError
from .shopify_client import ShopifyClient

__all__ = [
    "ShopifyError", "ShopifyClientError", "ShopifyServerError", "ShopifyRateLimitError", "ShopifyPayloadError",
    "ShopifyClient",
]
