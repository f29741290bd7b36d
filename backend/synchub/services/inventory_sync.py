"""
库存同步工作器：Nhanh 库存 → Shopify location 绝对库存。
  1) 读 mapping（不存在 → NotFoundError）
  2) 按 id 搜 Nhanh，按 精确 key > idNhanh > 第一条 的顺序挑商品
  3) 取 inventory.remain，若 location 对应的 depot 有 available 则优先
  4) 刷新快照，读 Shopify variant 拿 inventory_item_id 和当前库存（before），再 set
  5) 任何一侧的上游失败：mapping=error + 错误事件，返回失败结果，不抛
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import UpstreamError, ValidationError
from synchub.db.session import session_scope
from synchub.integrations.nhanh import (
    NhanhProductsAPI, RESOLUTION_FALLBACK, load_snapshot, parse_stock_level, product_title, resolve_product,
)
from synchub.integrations.shopify import ShopifyClient, ShopifyPayloadError
from synchub.repository import mapping_repo
from synchub.services.sync_common import BaseSyncWorker, SyncResult
from synchub.services.sync_log import SyncLog
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)


class InventorySyncWorker(BaseSyncWorker):
    action = "sync_inventory"

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        warehouse: NhanhProductsAPI,
        store: ShopifyClient,
        config: SyncConfig,
        sync_log: SyncLog,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        super().__init__(session_factory, config, sync_log, clock)
        self.warehouse = warehouse
        self.store = store

    def run(
        self,
        store_product_id: str,
        warehouse_product_id: str,
        location_id: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> SyncResult:
        mapping = self._load_mapping(store_product_id)
        location = location_id or self.config.default_location_id
        if not location:
            raise ValidationError("no location id given and SHOPIFY_LOCATION_ID is not configured")

        details: Dict[str, Any] = {
            "warehouseProductId": str(warehouse_product_id),
            "locationId": str(location),
        }

        try:
            products = self.warehouse.search_by_id(warehouse_product_id)
            product, resolution = resolve_product(
                products, warehouse_product_id, strict=self.config.strict_warehouse_match,
            )
            if product is None:
                raise ValidationError(f"warehouse product {warehouse_product_id} not found")

            depot = self.config.depot_for(location)
            level = parse_stock_level(product, depot)
            details.update(resolution=resolution, stockSource=level.source, sourceTitle=product_title(product))
            if resolution == RESOLUTION_FALLBACK:
                details["resolvedWarehouseId"] = str(product.get("idNhanh") or product.get("id") or "")

            # 搜索结果合并进原快照回写，映射时带来的 price 等字段保留给价格同步
            snapshot = {**(load_snapshot(mapping.warehouse_snapshot) or {}), **product}
            with session_scope(self.session_factory) as db:
                mapping_repo.set_snapshot(db, store_product_id, snapshot, now=self.clock())

            variant = self.store.get_variant(store_product_id)
            item_id = variant.get("inventory_item_id")
            if not item_id:
                raise ShopifyPayloadError(f"variant {store_product_id} has no inventory_item_id")
            details["targetTitle"] = variant.get("title")

            before = self.store.get_available(item_id, location)
            self.store.set_available(item_id, location, level.quantity)
        except UpstreamError as exc:
            return self._fail(mapping, exc, details, actor)

        details.update(before=before, after=level.quantity)
        logger.info(
            "sync.inventory.ok store_product_id=%s warehouse_product_id=%s location=%s before=%s after=%s resolution=%s",
            store_product_id, warehouse_product_id, location, before, level.quantity, resolution,
        )
        message = f"inventory {before} -> {level.quantity} at location {location}"
        return self._succeed(mapping, message, details, actor)
