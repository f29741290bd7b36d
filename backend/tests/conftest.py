"""Shared fixtures: in-memory SQLite, fake Shopify / Nhanh clients, a controllable clock."""

from __future__ import annotations

import os

# 必须在导入 synchub 之前设置：settings / engine 在导入时就会构造
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("SHOPIFY_LOCATION_ID", "L1")
os.environ.setdefault("SYNC_TASKS_INLINE", "false")

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from synchub.core.config import SyncConfig
from synchub.core.errors import QueueUnavailableError
from synchub.db.base import Base
import synchub.db.model  # noqa: F401
from synchub.integrations.nhanh.normalizers import products_from_payload
from synchub.integrations.shopify import ShopifyClientError
from synchub.services.batch_coordinator import BatchCoordinator
from synchub.services.inventory_sync import InventorySyncWorker
from synchub.services.job_queue import JobQueue, RetryPolicy
from synchub.services.price_sync import PriceSyncWorker
from synchub.services.product_discovery import ProductDiscovery
from synchub.services.sync_common import JobRunner
from synchub.services.sync_log import SyncLog


# ---------- clock ----------
class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


# ---------- database ----------
@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=Session, future=True)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def sync_config() -> SyncConfig:
    return SyncConfig(default_location_id="L1", depot_map={"L2": "175080"})


@pytest.fixture()
def sync_log(session_factory, sync_config, clock) -> SyncLog:
    return SyncLog(session_factory, sync_config, clock)


# ---------- fake Nhanh ----------
class FakeWarehouse:
    """search_by_id 返回 products[wid]（一个 {key: product} 字典），和真实 product/search 一样经 products_from_payload 处理。"""

    def __init__(self) -> None:
        self.search_results: Dict[str, Dict[str, Any]] = {}
        self.recent: List[Dict[str, Any]] = []
        self.search_calls: List[str] = []
        self.fail_with: Optional[Exception] = None

    def search_by_id(self, warehouse_product_id: str):
        self.search_calls.append(str(warehouse_product_id))
        if self.fail_with is not None:
            raise self.fail_with
        return products_from_payload({"products": self.search_results.get(str(warehouse_product_id), {})})

    def iter_updated_since(self, updated_from, **kwargs):
        self.updated_from = updated_from
        return iter(list(self.recent))


# ---------- fake Shopify ----------
class FakeStore:

    def __init__(self) -> None:
        self.variants: Dict[str, Dict[str, Any]] = {}
        self.levels: Dict[tuple, int] = {}
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.fail_create_titles: set = set()
        self._next_id = 9000

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def add_variant(self, variant_id: str, *, inventory_item_id: int = 777, price: str = "10.00", title: str = "Default Title"):
        self.variants[str(variant_id)] = {
            "id": int(variant_id), "inventory_item_id": inventory_item_id, "price": price, "title": title,
        }

    def get_variant(self, variant_id: str) -> dict:
        self.calls.append(("get_variant", str(variant_id)))
        self._maybe_fail()
        if str(variant_id) not in self.variants:
            raise ShopifyClientError("404 client error", status_code=404, body='{"errors":"Not Found"}')
        return dict(self.variants[str(variant_id)])

    def get_available(self, inventory_item_id, location_id):
        self.calls.append(("get_available", inventory_item_id, location_id))
        self._maybe_fail()
        return self.levels.get((inventory_item_id, str(location_id)))

    def set_available(self, inventory_item_id, location_id, available):
        self.calls.append(("set_available", inventory_item_id, str(location_id), available))
        self._maybe_fail()
        self.levels[(inventory_item_id, str(location_id))] = available
        return {"available": available}

    def update_variant_price(self, variant_id, price):
        self.calls.append(("update_variant_price", str(variant_id), price))
        self._maybe_fail()
        self.variants[str(variant_id)]["price"] = price
        return self.variants[str(variant_id)]

    def create_product(self, *, title, body_html, vendor, price, inventory_quantity, sku):
        self.calls.append(("create_product", title, price, inventory_quantity, sku))
        if title in self.fail_create_titles:
            raise ShopifyClientError("422 client error", status_code=422, body='{"errors":{"title":["invalid"]}}')
        self._next_id += 1
        product_id = self._next_id
        variant_id = product_id * 10
        self.add_variant(str(variant_id), price=price, title=title)
        return {"id": product_id, "title": title, "vendor": vendor, "variants": [{"id": variant_id, "sku": sku}]}

    def store_calls(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


@pytest.fixture()
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


# ---------- dispatcher ----------
class RecordingDispatcher:
    """只记录投递，不执行；测试里手动调用 queue.process。"""

    def __init__(self) -> None:
        self.dispatched: List[tuple] = []
        self.down = False

    def dispatch(self, job_id: int, countdown: int = 0) -> None:
        if self.down:
            raise QueueUnavailableError("broker down")
        self.dispatched.append((job_id, countdown))


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ---------- services ----------
@pytest.fixture()
def inventory_worker(session_factory, warehouse, store, sync_config, sync_log, clock) -> InventorySyncWorker:
    return InventorySyncWorker(session_factory, warehouse, store, sync_config, sync_log, clock)


@pytest.fixture()
def price_worker(session_factory, store, sync_config, sync_log, clock) -> PriceSyncWorker:
    return PriceSyncWorker(session_factory, store, sync_config, sync_log, clock)


@pytest.fixture()
def job_queue(session_factory, dispatcher, inventory_worker, price_worker, clock) -> JobQueue:
    return JobQueue(
        session_factory,
        dispatcher,
        policy=RetryPolicy(max_attempts=3, base_delay_sec=5, max_delay_sec=600),
        runner=JobRunner(inventory_worker, price_worker),
        clock=clock,
    )


@pytest.fixture()
def coordinator(session_factory, job_queue, sync_config, sync_log, clock) -> BatchCoordinator:
    return BatchCoordinator(session_factory, job_queue, sync_config, sync_log, clock)


@pytest.fixture()
def discovery(session_factory, warehouse, store, sync_config, sync_log, clock) -> ProductDiscovery:
    return ProductDiscovery(session_factory, warehouse, store, sync_config, sync_log, clock)
