"""
新品发现：把 Nhanh 上近期更新、但还没有 mapping 的商品建到 Shopify，并建立 mapping。
  - 每个商品独立处理，一个失败只记日志，不影响其它商品；
  - 创建前再查一次 mapping，避免与其它写入方重复建品。
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import ValidationError
from synchub.db.session import session_scope
from synchub.integrations.nhanh import NhanhProductsAPI, extract_warehouse_id, parse_price, parse_stock_level
from synchub.integrations.shopify import ShopifyClient
from synchub.repository import mapping_repo
from synchub.services.sync_log import SyncLog
from synchub.utils.clock import days_ago, now_utc

logger = logging.getLogger(__name__)


class ProductDiscovery:

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        warehouse: NhanhProductsAPI,
        store: ShopifyClient,
        config: SyncConfig,
        sync_log: SyncLog,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session_factory = session_factory
        self.warehouse = warehouse
        self.store = store
        self.config = config
        self.sync_log = sync_log
        self.clock = clock

    def discover(self, *, actor: Optional[str] = None) -> int:
        """返回本次成功建品并建立 mapping 的数量。"""
        since = days_ago(self.config.discovery_lookback_days, self.clock)
        recent = list(self.warehouse.iter_updated_since(since))

        with session_scope(self.session_factory) as db:
            existing = mapping_repo.existing_warehouse_ids(db)

        unmapped = _unmapped(recent, existing)
        logger.info(
            "discovery.start since=%s fetched=%s already_mapped=%s unmapped=%s",
            since, len(recent), len(existing), len(unmapped),
        )

        created = 0
        for warehouse_id, product in unmapped:
            try:
                if self._discover_one(warehouse_id, product, actor):
                    created += 1
            except Exception:
                logger.exception("discovery.product_failed warehouse_product_id=%s", warehouse_id)

        logger.info("discovery.done created=%s unmapped=%s", created, len(unmapped))
        return created

    def _discover_one(self, warehouse_id: str, product: Dict[str, Any], actor: Optional[str]) -> bool:
        with session_scope(self.session_factory) as db:
            if mapping_repo.find_by_warehouse_id(db, warehouse_id) is not None:
                logger.info("discovery.already_mapped warehouse_product_id=%s", warehouse_id)
                return False

        title = str(product.get("name") or f"Nhanh product {warehouse_id}")
        created = self.store.create_product(
            title=title,
            body_html=f"<p>Synced from Nhanh.vn (ID: {warehouse_id})</p>",
            vendor=self.config.discovery_vendor,
            price=_initial_price(product),
            inventory_quantity=_initial_quantity(product),
            sku=str(product.get("code") or f"NHANH-{warehouse_id}"),
        )
        store_product_id = _store_id(created)

        with session_scope(self.session_factory) as db:
            mapping = mapping_repo.upsert(db, store_product_id, product, status="pending", now=self.clock())
            mapping_id = mapping.id

        self.sync_log.record(
            mapping_id,
            "discover_product",
            "success",
            f"created store product {created.get('id')} for warehouse product {warehouse_id}",
            details={
                "warehouseProductId": warehouse_id,
                "storeProductId": store_product_id,
                "storeProductParentId": str(created.get("id")),
                "title": title,
            },
            actor=actor,
        )
        return True


def _unmapped(products: List[Dict[str, Any]], existing: set) -> List[tuple]:
    seen = set(existing)
    out = []
    for product in products:
        wid = extract_warehouse_id(product)
        if not wid or wid in seen:
            continue
        seen.add(wid)
        out.append((wid, product))
    return out


def _store_id(created: Dict[str, Any]) -> str:
    # mapping 以变体 id 为键（库存/价格都按变体操作），没有变体时退回商品 id
    variants = created.get("variants") or []
    if variants and variants[0].get("id"):
        return str(variants[0]["id"])
    return str(created["id"])


def _initial_price(product: Dict[str, Any]) -> str:
    try:
        return parse_price(product).as_store_string()
    except ValidationError:
        return "0"


def _initial_quantity(product: Dict[str, Any]) -> int:
    try:
        return parse_stock_level(product).quantity
    except ValidationError:
        return 0
