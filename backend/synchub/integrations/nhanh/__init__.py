from .errors import NhanhError, NhanhAuthError, NhanhClientError, NhanhServerError, NhanhRateLimitError, NhanhPayloadError
from .http_client import NhanhHttpClient
from .products import NhanhProductsAPI
from .normalizers import (
    Price, StockLevel, RESOLUTION_EXACT, RESOLUTION_ALTERNATE, RESOLUTION_FALLBACK,
    extract_warehouse_id, load_snapshot, parse_price, parse_stock_level, product_title, resolve_product,
)

__all__ = [
    "NhanhError", "NhanhAuthError", "NhanhClientError", "NhanhServerError", "NhanhRateLimitError", "NhanhPayloadError",
    "NhanhHttpClient", "NhanhProductsAPI",
    "Price", "StockLevel", "RESOLUTION_EXACT", "RESOLUTION_ALTERNATE", "RESOLUTION_FALLBACK",
    "extract_warehouse_id", "load_snapshot", "parse_price", "parse_stock_level", "product_title", "resolve_product",
]
