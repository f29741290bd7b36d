from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import UpstreamError
from synchub.integrations.nhanh import load_snapshot, parse_price, product_title
from synchub.integrations.shopify import ShopifyClient
from synchub.services.sync_common import BaseSyncWorker, SyncResult
from synchub.services.sync_log import SyncLog
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)


class PriceSyncWorker(BaseSyncWorker):
    """
    价格同步：从缓存快照解析价格（price > prices.web > prices.default），以字符串写回 Shopify variant。
    没有正数价格时直接抛 ValidationError，不调用 Shopify，也不改 mapping 状态。
    """
    action = "sync_price"

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        store: ShopifyClient,
        config: SyncConfig,
        sync_log: SyncLog,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        super().__init__(session_factory, config, sync_log, clock)
        self.store = store

    def run(
        self,
        store_product_id: str,
        warehouse_product_id: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> SyncResult:
        mapping = self._load_mapping(store_product_id)
        price = parse_price(mapping.warehouse_snapshot)     # ValidationError("no valid price")
        new_price = price.as_store_string()

        details: Dict[str, Any] = {
            "warehouseProductId": warehouse_product_id,
            "priceSource": price.source,
            "sourceTitle": product_title(load_snapshot(mapping.warehouse_snapshot)),
        }

        try:
            variant = self.store.get_variant(store_product_id)
            before = variant.get("price")
            details["targetTitle"] = variant.get("title")
            self.store.update_variant_price(store_product_id, new_price)
        except UpstreamError as exc:
            return self._fail(mapping, exc, details, actor)

        details.update(before=before, after=new_price)
        logger.info("sync.price.ok store_product_id=%s before=%s after=%s source=%s",
                    store_product_id, before, new_price, price.source)
        return self._succeed(mapping, f"price {before} -> {new_price}", details, actor)
