from __future__ import annotations
import logging
from typing import List, Optional

from celery import shared_task

from synchub.core.config import settings
from synchub.services import factory

logger = logging.getLogger(__name__)


"""
    单条同步任务：认领 → 执行 worker → 写结果。
    可重试失败时交给 Celery 的 retry（countdown 按 RetryPolicy），次数上限由 sync_jobs.max_attempts 控制。
"""
@shared_task(bind=True, name="synchub.orchestration.sync_tasks.run_sync_job", max_retries=None, acks_late=True)
def run_sync_job(self, job_id: int) -> Optional[str]:
    queue = factory.get_job_queue()
    outcome = queue.process(job_id, reschedule=False)
    if outcome is None:
        return None
    if outcome.retry_in is not None:
        raise self.retry(countdown=outcome.retry_in)
    return outcome.state


"""
    批次提交（fire-and-forget）：调用方拿到 AsyncResult 立即返回；
    任何异常只写进审计日志（batch_sync/error），不回抛给调用方。
"""
@shared_task(name="synchub.orchestration.sync_tasks.kick_batch_sync")
def kick_batch_sync(
    store_product_ids: List[str],
    sync_type: str = "inventory",
    location_id: Optional[str] = None,
    actor: Optional[str] = None,
) -> Optional[int]:
    try:
        started = factory.get_batch_coordinator().start_batch(
            store_product_ids, sync_type, location_id=location_id, actor=actor,
        )
        return started.batch_id
    except Exception as e:
        logger.exception("kick_batch_sync failed type=%s items=%s", sync_type, len(store_product_ids))
        factory.get_sync_log().record(
            None,
            "batch_sync",
            "error",
            f"{type(e).__name__}: {e}"[: settings.SYNC_ERROR_SNIPPET_CHARS],
            details={"type": sync_type, "total": len(store_product_ids), "storeProductIds": list(store_product_ids)},
            actor=actor,
        )
        return None


@shared_task(name="synchub.orchestration.sync_tasks.run_discovery")
def run_discovery() -> int:
    return factory.get_discovery().discover()


@shared_task(name="synchub.orchestration.sync_tasks.sweep_due_jobs")
def sweep_due_jobs() -> int:
    return factory.get_job_queue().redispatch_due(limit=settings.SYNC_SWEEP_LIMIT)
