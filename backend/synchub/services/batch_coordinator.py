from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import ValidationError
from synchub.db.model.sync_job import JOB_TYPES
from synchub.db.session import session_scope
from synchub.integrations.nhanh import extract_warehouse_id
from synchub.repository import mapping_repo, sync_event_repo, sync_job_repo
from synchub.services.job_queue import JobQueue
from synchub.services.sync_log import SyncLog
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)


@dataclass
class BatchStart:
    batch_id: int
    queued: List[Dict[str, Any]] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)


class BatchCoordinator:
    """
    一次提交多个商品的同步：
      - 单个商品解析失败（没有 mapping / 快照里没有仓库 id）只记进 failures，不影响其它商品；
      - 每个可解析的商品入队一条 job，最后写一条 batch_sync/scheduled 事件，事件 id 即 batch id；
      - 进度按 job 当前状态实时汇总，completed + failed + waiting + active == total。
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        queue: JobQueue,
        config: SyncConfig,
        sync_log: SyncLog,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.config = config
        self.sync_log = sync_log
        self.clock = clock

    def start_batch(
        self,
        store_product_ids: Iterable[str],
        type: str = "inventory",
        *,
        location_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> BatchStart:
        if type not in JOB_TYPES:
            raise ValidationError(f"invalid job type: {type}")

        ids = list(dict.fromkeys(str(i) for i in store_product_ids))
        queued: List[Dict[str, Any]] = []
        failures: Dict[str, str] = {}

        for store_product_id in ids:
            with session_scope(self.session_factory) as db:
                mapping = mapping_repo.find(db, store_product_id)
                snapshot = mapping.warehouse_snapshot if mapping is not None else None

            if mapping is None:
                failures[store_product_id] = "no mapping"
                logger.warning("batch.item_failed store_product_id=%s reason=no mapping", store_product_id)
                continue

            warehouse_product_id = extract_warehouse_id(snapshot)
            if not warehouse_product_id:
                failures[store_product_id] = "missing or unparsable warehouse product id in snapshot"
                logger.warning("batch.item_failed store_product_id=%s reason=bad snapshot", store_product_id)
                continue

            # QueueUnavailableError 直接抛：整个提交失败
            job_id = self.queue.enqueue(type, store_product_id, warehouse_product_id, location_id)
            queued.append({
                "jobId": job_id,
                "storeProductId": store_product_id,
                "warehouseProductId": warehouse_product_id,
            })

        event = self.sync_log.record(
            None,
            "batch_sync",
            "scheduled",
            f"batch {type}: {len(queued)} queued, {len(failures)} failed",
            details={
                "type": type,
                "total": len(ids),
                "locationId": location_id,
                "queuedJobs": queued,
                "failedItems": failures,
            },
            actor=actor,
        )
        with session_scope(self.session_factory) as db:
            sync_job_repo.assign_batch(db, [q["jobId"] for q in queued], event.id)

        logger.info("batch.scheduled batch_id=%s type=%s queued=%s failed=%s", event.id, type, len(queued), len(failures))
        return BatchStart(batch_id=event.id, queued=queued, failures=failures)

    def get_batch_status(self, batch_id: int) -> Dict[str, Any]:
        with session_scope(self.session_factory) as db:
            event = sync_event_repo.get_batch(db, batch_id)      # NotFoundError
            queued = list((event.details or {}).get("queuedJobs") or [])
            rows = sync_job_repo.get_many(db, [q["jobId"] for q in queued])

            jobs = []
            for q in queued:
                row = rows.get(int(q["jobId"]))
                jobs.append({
                    **q,
                    "state": row.state if row is not None else "unknown",
                    "attempts": row.attempts if row is not None else 0,
                    "lastError": row.last_error if row is not None else None,
                })

            batch_log = {
                "id": event.id,
                "action": event.action,
                "status": event.status,
                "message": event.message,
                "details": event.details,
                "actor": event.actor,
                "createdAt": event.created_at.isoformat() if event.created_at else None,
            }

        return {"batchLog": batch_log, "jobs": jobs, "stats": aggregate_stats(j["state"] for j in jobs)}

    def cancel_batch(self, batch_id: int) -> int:
        """批次里还没开始的任务全部标记为 skipped，返回取消条数。"""
        with session_scope(self.session_factory) as db:
            event = sync_event_repo.get_batch(db, batch_id)
            job_ids = [q["jobId"] for q in (event.details or {}).get("queuedJobs") or []]
            cancelled = sync_job_repo.cancel(db, job_ids, now=self.clock())
        logger.info("batch.cancelled batch_id=%s jobs=%s", batch_id, cancelled)
        return cancelled


def aggregate_stats(states: Iterable[str]) -> Dict[str, Any]:
    """
    waiting 含 delayed；failed 含 skipped 以及找不到的 job（unknown），
    保证四个桶加起来等于 total。skipped 另外单独报一次。
    """
    stats = {"total": 0, "completed": 0, "failed": 0, "waiting": 0, "active": 0, "skipped": 0}
    for state in states:
        stats["total"] += 1
        if state == "completed":
            stats["completed"] += 1
        elif state == "active":
            stats["active"] += 1
        elif state in ("waiting", "delayed"):
            stats["waiting"] += 1
        else:
            stats["failed"] += 1
            if state == "skipped":
                stats["skipped"] += 1
    total = stats["total"]
    stats["progress"] = round(stats["completed"] / total * 100, 2) if total else 0
    return stats
