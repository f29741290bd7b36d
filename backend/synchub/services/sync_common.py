"""
库存/价格工作器的公共部分
  - SyncResult：单个商品一次同步的结果，工作器不因 Store 失败抛异常，而是返回它；
  - BaseSyncWorker：加载 mapping、成功/失败时写 mapping 状态 + 审计事件；
  - JobRunner：按 job.type 分派到对应工作器（all = 先库存再价格）。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import UpstreamError, ValidationError
from synchub.db.session import session_scope
from synchub.repository import mapping_repo
from synchub.services.sync_log import SyncLog
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    store_product_id: str
    action: str
    success: bool
    retryable: bool = False
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "storeProductId": self.store_product_id,
            "action": self.action,
            "success": self.success,
            "retryable": self.retryable,
            "error": self.error,
            "details": self.details,
        }


@dataclass(frozen=True)
class MappingRef:
    """mapping 的只读副本，worker 在 session 关闭后使用。"""
    id: int
    store_product_id: str
    warehouse_snapshot: Any


@dataclass(frozen=True)
class JobSpec:
    id: int
    type: str
    store_product_id: str
    warehouse_product_id: str
    location_id: Optional[str]
    attempts: int
    max_attempts: int


class BaseSyncWorker:
    action: str = ""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: SyncConfig,
        sync_log: SyncLog,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.sync_log = sync_log
        self.clock = clock

    def _load_mapping(self, store_product_id: str) -> MappingRef:
        with session_scope(self.session_factory) as db:
            row = mapping_repo.get(db, store_product_id)   # NotFoundError
            return MappingRef(id=row.id, store_product_id=row.store_product_id,
                              warehouse_snapshot=row.warehouse_snapshot)

    def _succeed(self, mapping: MappingRef, message: str, details: Dict[str, Any], actor: Optional[str]) -> SyncResult:
        with session_scope(self.session_factory) as db:
            mapping_repo.set_status(db, mapping.store_product_id, "success", now=self.clock())
        self.sync_log.record(
            mapping.id, self.action, "success", message, details=details, actor=actor,
        )
        return SyncResult(mapping.store_product_id, self.action, success=True, details=details)

    def _fail(
        self,
        mapping: MappingRef,
        exc: UpstreamError,
        details: Dict[str, Any],
        actor: Optional[str],
    ) -> SyncResult:
        snippet = exc.snippet(self.config.error_snippet_chars)
        logger.warning(
            "sync.%s.failed store_product_id=%s status=%s retryable=%s err=%s",
            self.action, mapping.store_product_id, exc.status_code, exc.retryable, snippet,
        )
        with session_scope(self.session_factory) as db:
            mapping_repo.set_status(db, mapping.store_product_id, "error", snippet, now=self.clock())

        details = dict(details, statusCode=exc.status_code, retryable=exc.retryable)
        self.sync_log.record(mapping.id, self.action, "error", snippet, details=details, actor=actor)
        return SyncResult(
            mapping.store_product_id, self.action, success=False,
            retryable=exc.retryable, error=snippet, details=details,
        )


class JobRunner:
    """把一条 job 交给对应的工作器执行。"""

    def __init__(self, inventory_worker, price_worker) -> None:
        self.inventory_worker = inventory_worker
        self.price_worker = price_worker

    def __call__(self, job: JobSpec) -> SyncResult:
        if job.type == "inventory":
            return self._inventory(job)
        if job.type == "price":
            return self._price(job)
        if job.type == "all":
            inv = self._inventory(job)
            price = self._price(job)
            return _combine(job.store_product_id, inv, price)
        raise ValidationError(f"unknown job type: {job.type}")

    def _inventory(self, job: JobSpec) -> SyncResult:
        return self.inventory_worker.run(job.store_product_id, job.warehouse_product_id, job.location_id)

    def _price(self, job: JobSpec) -> SyncResult:
        return self.price_worker.run(job.store_product_id, job.warehouse_product_id)


def _combine(store_product_id: str, *results: SyncResult) -> SyncResult:
    failed = [r for r in results if not r.success]
    return SyncResult(
        store_product_id,
        "all",
        success=not failed,
        retryable=any(r.retryable for r in failed),
        error="; ".join(f"{r.action}: {r.error}" for r in failed) or None,
        details={r.action: r.as_dict() for r in results},
    )
