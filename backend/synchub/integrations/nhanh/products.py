"""
Nhanh 商品高层 API：
   - 按 id 搜索单个商品（库存/价格同步用）；
   - 按更新时间分页拉取近期商品（新品发现用），遍历 page 直到 totalPages 或页数上限。
"""
from __future__ import annotations
import logging
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Tuple

from synchub.core.config import settings
from synchub.integrations.nhanh.http_client import NhanhHttpClient
from synchub.integrations.nhanh.normalizers import products_from_payload

logger = logging.getLogger(__name__)

SEARCH_PATH = "/api/product/search"


class NhanhProductsAPI:

    def __init__(self, client: Optional[NhanhHttpClient] = None) -> None:
        self.client = client or NhanhHttpClient()

    def search_by_id(self, warehouse_product_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        """返回 [(key, product)]，保持接口返回顺序，交给 resolve_product 挑选。"""
        payload = self.client.post_form(SEARCH_PATH, {"id": str(warehouse_product_id)})
        return products_from_payload(payload)

    def search_page(self, *, updated_from: date, page: int, limit: int) -> Tuple[List[Dict[str, Any]], int]:
        payload = self.client.post_form(
            SEARCH_PATH,
            {"page": page, "limit": limit, "updatedFrom": updated_from.strftime("%Y-%m-%d")},
        )
        items = [p for _, p in products_from_payload(payload)]
        total_pages = _to_int(payload.get("totalPages")) or 1
        return items, total_pages

    def iter_updated_since(
        self,
        updated_from: date,
        *,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        limit = limit or settings.DISCOVERY_PAGE_LIMIT
        max_pages = max_pages or settings.DISCOVERY_MAX_PAGES

        page = 1
        while page <= max_pages:
            items, total_pages = self.search_page(updated_from=updated_from, page=page, limit=limit)
            logger.info("nhanh.products.page page=%s/%s items=%s", page, total_pages, len(items))
            yield from items
            if not items or page >= total_pages:
                return
            page += 1
        logger.warning("nhanh.products.page_cap_hit max_pages=%s updated_from=%s", max_pages, updated_from)


def _to_int(v: Any) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError):
        return None
