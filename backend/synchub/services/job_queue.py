"""
持久化任务队列
  - sync_jobs 表是唯一的真相来源，broker（Celery）只负责“什么时候跑哪条 id”；
  - RetryPolicy 与具体 broker 无关：最多 max_attempts 次，指数退避 5s, 10s, 20s ...；
  - 每次执行都完整重跑 worker 逻辑（设置绝对值，天然幂等）。
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from kombu.exceptions import OperationalError as BrokerOperationalError
from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import NotFoundError, QueueUnavailableError, ValidationError
from synchub.db.model.sync_job import SyncJob
from synchub.db.session import session_scope
from synchub.repository import sync_job_repo
from synchub.services.sync_common import JobSpec, SyncResult
from synchub.utils.backoff import calc_next_delay
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_sec: int = 5
    max_delay_sec: int = 600
    visibility_timeout_sec: int = 900      # active 超过这么久没有进展 → 视为 worker 丢失

    @classmethod
    def from_config(cls, config: SyncConfig) -> "RetryPolicy":
        return cls(config.max_attempts, config.backoff_base_sec, config.backoff_max_sec,
                   config.visibility_timeout_sec)

    def delay(self, attempts: int) -> int:
        """第 attempts 次失败后等多久再跑下一次。"""
        return calc_next_delay(attempts, self.base_delay_sec, self.max_delay_sec)

    def should_retry(self, attempts: int, max_attempts: Optional[int] = None) -> bool:
        return attempts < (max_attempts or self.max_attempts)


@dataclass(frozen=True)
class JobOutcome:
    job_id: int
    state: str
    retry_in: Optional[int] = None
    result: Optional[SyncResult] = None


class Dispatcher(Protocol):
    def dispatch(self, job_id: int, countdown: int = 0) -> None: ...


class CeleryDispatcher:
    """投递到 Celery；broker 连不上时转成 QueueUnavailableError。"""

    def dispatch(self, job_id: int, countdown: int = 0) -> None:
        from synchub.orchestration.sync_tasks import run_sync_job

        try:
            run_sync_job.apply_async(args=[job_id], countdown=countdown or None, retry=False)
        except BrokerOperationalError as e:
            raise QueueUnavailableError(f"job broker unreachable: {e}") from e


class LocalWorkerPool:
    """
    SYNC_TASKS_INLINE 模式：进程内 N 个线程消费任务，不走 broker。
    countdown > 0 时用 Timer 延后提交。
    """

    def __init__(self, max_workers: int = 5) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sync-worker")
        self._handler: Optional[Callable[[int], Any]] = None

    def bind(self, handler: Callable[[int], Any]) -> None:
        self._handler = handler

    def dispatch(self, job_id: int, countdown: int = 0) -> None:
        if self._handler is None:
            raise QueueUnavailableError("local worker pool has no job handler bound")
        if countdown and countdown > 0:
            timer = threading.Timer(countdown, self._submit, args=(job_id,))
            timer.daemon = True
            timer.start()
            return
        self._submit(job_id)

    def _submit(self, job_id: int) -> None:
        try:
            self._executor.submit(self._run, job_id)
        except RuntimeError as e:     # executor 已 shutdown
            raise QueueUnavailableError(f"local worker pool is shut down: {e}") from e

    def _run(self, job_id: int) -> None:
        try:
            self._handler(job_id)
        except Exception:
            logger.exception("local worker crashed job_id=%s", job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class JobQueue:

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        dispatcher: Dispatcher,
        policy: RetryPolicy = RetryPolicy(),
        runner: Optional[Callable[[JobSpec], SyncResult]] = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.policy = policy
        self.runner = runner
        self.clock = clock

    # ---------- producer side ----------
    def enqueue(
        self,
        type: str,
        store_product_id: str,
        warehouse_product_id: str,
        location_id: Optional[str] = None,
        *,
        batch_id: Optional[int] = None,
    ) -> int:
        """写入 sync_jobs 并投递；只有 broker 不可达会抛（QueueUnavailableError）。"""
        with session_scope(self.session_factory) as db:
            job = sync_job_repo.create(
                db,
                type=type,
                store_product_id=store_product_id,
                warehouse_product_id=warehouse_product_id,
                location_id=location_id,
                max_attempts=self.policy.max_attempts,
                batch_id=batch_id,
                now=self.clock(),
            )
            job_id = job.id

        try:
            self.dispatcher.dispatch(job_id)
        except QueueUnavailableError:
            # 投递失败的行标成 failed，避免 sweeper 之后又把它捡起来
            with session_scope(self.session_factory) as db:
                sync_job_repo.mark_failed(db, sync_job_repo.get(db, job_id), "broker unreachable", now=self.clock())
            raise

        logger.info("job_queue.enqueued job_id=%s type=%s store_product_id=%s", job_id, type, store_product_id)
        return job_id

    def get(self, job_id: int) -> SyncJob:
        with session_scope(self.session_factory) as db:
            return sync_job_repo.get(db, job_id)

    def state(self, job_id: int) -> str:
        return self.get(job_id).state

    def cancel(self, job_id: int) -> bool:
        """未开始的任务标记为 skipped；已经在跑或已结束的返回 False。"""
        with session_scope(self.session_factory) as db:
            sync_job_repo.get(db, job_id)     # NotFoundError
            return sync_job_repo.cancel(db, [job_id], now=self.clock()) > 0

    def redispatch_due(self, limit: int = 200) -> int:
        """
        把到期但还没跑的任务重新投递（补偿丢失的投递/重启前的延迟任务）。
        先收回 worker 崩溃后卡在 active 的任务：还有次数的放回 delayed 一并投递，用完的直接 failed。
        """
        with session_scope(self.session_factory) as db:
            requeued, lost = sync_job_repo.reclaim_stale(
                db, self.policy.visibility_timeout_sec, limit, now=self.clock()
            )
            ids = requeued + sync_job_repo.lease_due(db, limit, now=self.clock())
        if requeued or lost:
            logger.warning("job_queue.reclaimed requeued=%s failed=%s", requeued, lost)
        for job_id in ids:
            self.dispatcher.dispatch(job_id)
        if ids:
            logger.info("job_queue.redispatched count=%s", len(ids))
        return len(ids)

    # ---------- consumer side ----------
    def process(self, job_id: int, *, reschedule: bool = True) -> Optional[JobOutcome]:
        """
        执行一条任务：
          - 成功 → completed
          - 可重试失败且还有次数 → delayed（reschedule=True 时自己按退避再投递）
          - 其它失败、ValidationError / NotFoundError → failed
        任务已被取消/已被其他 worker 拿走时返回 None。
        """
        if self.runner is None:
            raise RuntimeError("JobQueue has no runner configured")

        with session_scope(self.session_factory) as db:
            job = sync_job_repo.claim(db, job_id, now=self.clock())
            if job is None:
                logger.info("job_queue.skip_claim job_id=%s (cancelled, finished or taken)", job_id)
                return None
            spec = JobSpec(
                id=job.id, type=job.type, store_product_id=job.store_product_id,
                warehouse_product_id=job.warehouse_product_id, location_id=job.location_id,
                attempts=job.attempts, max_attempts=job.max_attempts,
            )

        try:
            result = self.runner(spec)
        except (ValidationError, NotFoundError) as e:
            logger.warning("job_queue.failed_permanent job_id=%s err=%s", job_id, e)
            return self._finish_failed(spec, str(e))
        except Exception as e:
            logger.exception("job_queue.crashed job_id=%s attempt=%s/%s", job_id, spec.attempts, spec.max_attempts)
            result = SyncResult(spec.store_product_id, spec.type, success=False, retryable=True,
                                error=f"{type(e).__name__}: {e}")

        if result.success:
            with session_scope(self.session_factory) as db:
                sync_job_repo.mark_completed(db, sync_job_repo.get(db, job_id), result.as_dict(), now=self.clock())
            return JobOutcome(job_id, "completed", result=result)

        if result.retryable and self.policy.should_retry(spec.attempts, spec.max_attempts):
            delay = self.policy.delay(spec.attempts)
            with session_scope(self.session_factory) as db:
                sync_job_repo.mark_delayed(db, sync_job_repo.get(db, job_id), result.error or "", delay, now=self.clock())
            logger.info("job_queue.retry job_id=%s attempt=%s/%s in=%ss", job_id, spec.attempts, spec.max_attempts, delay)
            if reschedule:
                self.dispatcher.dispatch(job_id, countdown=delay)
            return JobOutcome(job_id, "delayed", retry_in=delay, result=result)

        return self._finish_failed(spec, result.error or "sync failed", result)

    def _finish_failed(self, spec: JobSpec, error: str, result: Optional[SyncResult] = None) -> JobOutcome:
        with session_scope(self.session_factory) as db:
            sync_job_repo.mark_failed(
                db, sync_job_repo.get(db, spec.id), error,
                result.as_dict() if result is not None else None, now=self.clock(),
            )
        return JobOutcome(spec.id, "failed", result=result)
