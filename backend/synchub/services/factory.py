# 组装同步引擎：配置、客户端、worker、队列只在这里构造一次，API 和 Celery 任务共用

from __future__ import annotations

from functools import lru_cache

from synchub.core.config import SyncConfig, settings
from synchub.db.session import SessionLocal
from synchub.integrations.nhanh import NhanhProductsAPI
from synchub.integrations.shopify import ShopifyClient
from synchub.services.batch_coordinator import BatchCoordinator
from synchub.services.inventory_sync import InventorySyncWorker
from synchub.services.job_queue import CeleryDispatcher, JobQueue, LocalWorkerPool, RetryPolicy
from synchub.services.price_sync import PriceSyncWorker
from synchub.services.product_discovery import ProductDiscovery
from synchub.services.sync_common import JobRunner
from synchub.services.sync_log import SyncLog


"""
  调试开关：True 时任务在当前进程的线程池里执行，不走 broker。
"""
def _inline_tasks_enabled() -> bool:
    return bool(settings.SYNC_TASKS_INLINE)


@lru_cache
def get_sync_config() -> SyncConfig:
    return SyncConfig.from_settings(settings)


@lru_cache
def get_sync_log() -> SyncLog:
    return SyncLog(SessionLocal, get_sync_config())


@lru_cache
def get_warehouse() -> NhanhProductsAPI:
    return NhanhProductsAPI()


@lru_cache
def get_store() -> ShopifyClient:
    return ShopifyClient()


@lru_cache
def get_job_queue() -> JobQueue:
    config = get_sync_config()
    inventory = InventorySyncWorker(SessionLocal, get_warehouse(), get_store(), config, get_sync_log())
    price = PriceSyncWorker(SessionLocal, get_store(), config, get_sync_log())

    if _inline_tasks_enabled():
        dispatcher = LocalWorkerPool(max_workers=settings.SYNC_WORKER_CONCURRENCY)
    else:
        dispatcher = CeleryDispatcher()

    queue = JobQueue(
        SessionLocal,
        dispatcher,
        policy=RetryPolicy.from_config(config),
        runner=JobRunner(inventory, price),
    )
    if isinstance(dispatcher, LocalWorkerPool):
        dispatcher.bind(queue.process)
    return queue


@lru_cache
def get_batch_coordinator() -> BatchCoordinator:
    return BatchCoordinator(SessionLocal, get_job_queue(), get_sync_config(), get_sync_log())


@lru_cache
def get_discovery() -> ProductDiscovery:
    return ProductDiscovery(SessionLocal, get_warehouse(), get_store(), get_sync_config(), get_sync_log())
