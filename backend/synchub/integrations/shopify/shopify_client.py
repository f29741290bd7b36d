"""面向 Admin REST API 的轻量 Client，只放同步引擎用到的几个资源"""
from __future__ import annotations

import time, logging
from typing import Any, Dict, Optional

import requests
from requests import HTTPError, Timeout, RequestException

from synchub.core.config import settings
from synchub.integrations.shopify.errors import (
    ShopifyClientError, ShopifyServerError, ShopifyRateLimitError, ShopifyPayloadError,
)


logger = logging.getLogger(__name__)


# ---------------- 基础：端点 & 认证 ----------------

def _rest_base(shop: str, api_version: str) -> str:
    # 兼容只填店铺名（my-store）或完整 myshopify 域名
    domain = shop if "." in shop else f"{shop}.myshopify.com"
    return f"https://{domain}/admin/api/{api_version}"


def _auth_headers(token: Any) -> dict:
    # 统一构造认证头。兼容 SecretStr 或 str。
    if hasattr(token, "get_secret_value"):
        token = token.get_secret_value()
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "X-Shopify-Access-Token": token or "",
        "User-Agent": "SyncHub/ShopifyClient (+python)",
    }


def _numeric_id(value: Any) -> str:
    # gid://shopify/ProductVariant/123 -> 123
    s = str(value)
    return s.rsplit("/", 1)[-1] if s.startswith("gid://") else s


class ShopifyClient:

    def __init__(
        self,
        shop: Optional[str] = None,
        token: Any = None,
        api_version: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = _rest_base(shop or settings.SHOPIFY_SHOP, api_version or settings.SHOPIFY_API_VERSION)
        self._token = token if token is not None else settings.SHOPIFY_ADMIN_TOKEN
        self.timeout = timeout or settings.SHOPIFY_HTTP_TIMEOUT
        self.max_retries = settings.SHOPIFY_HTTP_RETRIES if max_retries is None else max(0, max_retries)
        self.backoff_ms = backoff_ms or settings.SHOPIFY_HTTP_BACKOFF_MS
        self._session = session or requests.Session()

    '''
    通用 REST 调用（带日志 + 重试 + 埋点）
        1) HTTP 5xx / 网络异常 / 超时做指数退避重试，用尽后抛 retryable 的 ShopifyError
        2) 429 优先按 Retry-After 等待
        3) 其余 4xx 不重试，直接抛（body 保留，上层截断写进 mapping.last_error）
    '''
    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict] = None,
        params: Optional[dict] = None,
        op_name: str = "",
    ) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"

        for attempt in range(self.max_retries + 1):
            start = time.perf_counter()
            try:
                resp = self._session.request(
                    method, url,
                    headers=_auth_headers(self._token),
                    json=json_body,
                    params=params,
                    timeout=self.timeout,
                )
            except Timeout as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                logger.warning("shopify.rest.timeout op=%s latency_ms=%s attempt=%s/%s",
                               op_name, latency_ms, attempt, self.max_retries)
                if attempt == self.max_retries:
                    raise ShopifyClientError(f"timeout: {e}", retryable=True) from e
                self._sleep(attempt)
                continue
            except RequestException as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                logger.warning("shopify.rest.request_exception op=%s latency_ms=%s attempt=%s/%s err=%s",
                               op_name, latency_ms, attempt, self.max_retries, type(e).__name__)
                if attempt == self.max_retries:
                    raise ShopifyClientError(f"request error: {e}", retryable=True) from e
                self._sleep(attempt)
                continue

            latency_ms = int((time.perf_counter() - start) * 1000)
            status = resp.status_code
            try:
                resp.raise_for_status()
            except HTTPError as e:
                body = resp.text or ""

                if status == 429:
                    retry_after = resp.headers.get("Retry-After")
                    logger.warning(
                        "shopify.rest.429_throttled op=%s latency_ms=%s attempt=%s/%s retry_after=%s",
                        op_name, latency_ms, attempt, self.max_retries, retry_after)
                    if attempt == self.max_retries:
                        raise ShopifyRateLimitError("429 after retries", status_code=429, body=body, retryable=True) from e
                    try:
                        sleep_s = max(0.1, float(retry_after))
                    except (TypeError, ValueError):
                        sleep_s = (self.backoff_ms / 1000.0) * (2 ** attempt)
                    time.sleep(sleep_s)
                    continue

                logger.warning("shopify.rest.http_error op=%s status=%s latency_ms=%s attempt=%s/%s",
                               op_name, status, latency_ms, attempt, self.max_retries)
                if status >= 500:
                    if attempt == self.max_retries:
                        raise ShopifyServerError(f"{status} after retries", status_code=status, body=body,
                                                 retryable=True) from e
                    self._sleep(attempt)
                    continue
                raise ShopifyClientError(f"{status} client error", status_code=status, body=body) from e

            try:
                data = resp.json() if resp.content else {}
            except ValueError as e:
                raise ShopifyPayloadError(f"non-JSON response: status={status}", status_code=status,
                                          body=resp.text) from e

            logger.info("shopify.rest.ok op=%s status=%s latency_ms=%s attempt=%s", op_name, status, latency_ms, attempt)
            return data

        raise ShopifyClientError("unreachable retry loop")

    def _sleep(self, attempt: int) -> None:
        time.sleep((self.backoff_ms / 1000.0) * (2 ** attempt))

    def close(self) -> None:
        self._session.close()


    # ---------------- 资源方法 ----------------

    # 基础连通性探测（token/域名/版本是否正确）
    def ping(self) -> dict:
        data = self._request("GET", "shop.json", op_name="shop.ping")
        return data.get("shop") or {}

    def get_variant(self, variant_id: str) -> dict:
        """返回 variant（含 inventory_item_id / price / product_id / title）。"""
        vid = _numeric_id(variant_id)
        data = self._request("GET", f"variants/{vid}.json", op_name="variant.get")
        variant = data.get("variant")
        if not isinstance(variant, dict):
            raise ShopifyPayloadError(f"variant {vid} missing in response", body=str(data))
        return variant

    def get_available(self, inventory_item_id: Any, location_id: str) -> Optional[int]:
        """当前 location 上的可售库存；没有 level 记录时返回 None。"""
        data = self._request(
            "GET", "inventory_levels.json",
            params={"inventory_item_ids": _numeric_id(inventory_item_id), "location_ids": _numeric_id(location_id)},
            op_name="inventory_levels.get",
        )
        levels = data.get("inventory_levels") or []
        if not levels:
            return None
        available = levels[0].get("available")
        return int(available) if available is not None else None

    def set_available(self, inventory_item_id: Any, location_id: str, available: int) -> dict:
        """设置 location 上的绝对库存（幂等：重放只会写同一个值）。"""
        body = {
            "location_id": int(_numeric_id(location_id)),
            "inventory_item_id": int(_numeric_id(inventory_item_id)),
            "available": int(available),
        }
        data = self._request("POST", "inventory_levels/set.json", json_body=body, op_name="inventory_levels.set")
        return data.get("inventory_level") or {}

    def update_variant_price(self, variant_id: str, price: str) -> dict:
        vid = _numeric_id(variant_id)
        body = {"variant": {"id": int(vid), "price": str(price)}}
        data = self._request("PUT", f"variants/{vid}.json", json_body=body, op_name="variant.price")
        return data.get("variant") or {}

    def create_product(
        self,
        *,
        title: str,
        body_html: str,
        vendor: str,
        price: str,
        inventory_quantity: int,
        sku: str,
    ) -> dict:
        """创建一个单变体商品，返回 product（含 variants）。"""
        body = {
            "product": {
                "title": title,
                "body_html": body_html,
                "vendor": vendor,
                "status": "active",
                "variants": [{
                    "price": price,
                    "inventory_management": "shopify",
                    "inventory_quantity": int(inventory_quantity),
                    "sku": sku,
                }],
            }
        }
        data = self._request("POST", "products.json", json_body=body, op_name="product.create")
        product = data.get("product")
        if not isinstance(product, dict) or not product.get("id"):
            raise ShopifyPayloadError("created product missing in response", body=str(data))
        return product
