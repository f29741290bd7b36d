# sync_jobs repository：持久化队列任务的状态机

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from synchub.core.errors import NotFoundError, ValidationError
from synchub.db.model.sync_job import SyncJob, JOB_TYPES
from synchub.utils.clock import now_utc
from synchub.utils.serialization import to_jsonable

LAST_ERROR_MAX_CHARS = 2000
CANCELLABLE_STATES = ("waiting", "delayed")
LEASE_SEC = 300


def create(
    db: Session,
    *,
    type: str,
    store_product_id: str,
    warehouse_product_id: str,
    location_id: Optional[str],
    max_attempts: int,
    batch_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SyncJob:
    if type not in JOB_TYPES:
        raise ValidationError(f"invalid job type: {type}")
    now = now or now_utc()
    job = SyncJob(
        type=type,
        store_product_id=str(store_product_id),
        warehouse_product_id=str(warehouse_product_id),
        location_id=str(location_id) if location_id is not None else None,
        state="waiting",
        attempts=0,
        max_attempts=max_attempts,
        available_at=now,
        batch_id=batch_id,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get(db: Session, job_id: int) -> SyncJob:
    job = db.get(SyncJob, job_id)
    if job is None:
        raise NotFoundError(f"job {job_id} not found")
    return job


def get_many(db: Session, job_ids: Iterable[int]) -> dict[int, SyncJob]:
    ids = [int(j) for j in job_ids]
    if not ids:
        return {}
    rows = db.scalars(select(SyncJob).where(SyncJob.id.in_(ids)))
    return {row.id: row for row in rows}


def assign_batch(db: Session, job_ids: Iterable[int], batch_id: int) -> None:
    ids = [int(j) for j in job_ids]
    if not ids:
        return
    db.execute(update(SyncJob).where(SyncJob.id.in_(ids)).values(batch_id=batch_id))
    db.commit()


def claim(db: Session, job_id: int, *, now: Optional[datetime] = None) -> Optional[SyncJob]:
    """
    到期的 waiting/delayed → active，attempts+1。
    还在退避期内、行被锁住、已被别的 worker 拿走、或已取消/结束时返回 None。
    """
    now = now or now_utc()
    stmt = (
        select(SyncJob)
        .where(
            SyncJob.id == job_id,
            SyncJob.state.in_(CANCELLABLE_STATES),
            SyncJob.available_at <= now,
        )
        .with_for_update(skip_locked=True)
    )
    job = db.scalars(stmt).first()
    if job is None:
        db.rollback()
        return None
    job.state = "active"
    job.attempts = (job.attempts or 0) + 1
    job.leased_until = None
    job.updated_at = now
    db.commit()
    return job


def mark_completed(db: Session, job: SyncJob, result: Any = None, *, now: Optional[datetime] = None) -> None:
    job.state = "completed"
    job.last_error = None
    job.result = to_jsonable(result) if result is not None else None
    job.updated_at = now or now_utc()
    db.commit()


def mark_failed(db: Session, job: SyncJob, error: str, result: Any = None, *, now: Optional[datetime] = None) -> None:
    job.state = "failed"
    job.last_error = _clip(error)
    if result is not None:
        job.result = to_jsonable(result)
    job.updated_at = now or now_utc()
    db.commit()


def mark_delayed(db: Session, job: SyncJob, error: str, delay_sec: int, *, now: Optional[datetime] = None) -> None:
    now = now or now_utc()
    job.state = "delayed"
    job.last_error = _clip(error)
    job.available_at = now + timedelta(seconds=delay_sec)
    job.updated_at = now
    db.commit()


def cancel(db: Session, job_ids: Iterable[int], *, now: Optional[datetime] = None) -> int:
    """未开始的任务（waiting/delayed）标记为 skipped；返回实际取消的条数。"""
    ids = [int(j) for j in job_ids]
    if not ids:
        return 0
    stmt = (
        update(SyncJob)
        .where(SyncJob.id.in_(ids), SyncJob.state.in_(CANCELLABLE_STATES))
        .values(state="skipped", updated_at=now or now_utc())
    )
    res = db.execute(stmt)
    db.commit()
    return res.rowcount or 0


def lease_due(db: Session, limit: int, *, now: Optional[datetime] = None) -> List[int]:
    """
    扫出到期的 waiting/delayed 任务 id，交给 sweeper 重新投递。
    FOR UPDATE SKIP LOCKED 避免多个 sweeper 拿到同一批。
    """
    now = now or now_utc()
    stmt = (
        select(SyncJob.id)
        .where(
            SyncJob.state.in_(CANCELLABLE_STATES),
            SyncJob.available_at <= now,
            or_(SyncJob.leased_until.is_(None), SyncJob.leased_until <= now),
        )
        .order_by(SyncJob.available_at.asc(), SyncJob.id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    ids = list(db.scalars(stmt))
    if ids:
        # 冷却期内下一轮 sweep 不再重复投递；available_at 不动，投递到的 worker 仍可认领
        db.execute(
            update(SyncJob)
            .where(SyncJob.id.in_(ids))
            .values(leased_until=now + timedelta(seconds=LEASE_SEC), updated_at=now)
        )
    db.commit()
    return ids


def reclaim_stale(
    db: Session,
    visibility_timeout_sec: int,
    limit: int,
    *,
    now: Optional[datetime] = None,
) -> Tuple[List[int], List[int]]:
    """
    active 超过 visibility_timeout_sec 没有进展的任务视为 worker 已丢失（那一次执行算一次尝试）：
    还有次数 → 放回 delayed（立即到期），用完 → failed。
    返回 (requeued_ids, failed_ids)。
    """
    now = now or now_utc()
    stmt = (
        select(SyncJob)
        .where(
            SyncJob.state == "active",
            SyncJob.updated_at <= now - timedelta(seconds=visibility_timeout_sec),
        )
        .order_by(SyncJob.updated_at.asc(), SyncJob.id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    requeued: List[int] = []
    failed: List[int] = []
    for job in db.scalars(stmt).all():
        job.last_error = _clip(f"worker lost after {visibility_timeout_sec}s in active state")
        job.updated_at = now
        if job.attempts >= job.max_attempts:
            job.state = "failed"
            failed.append(job.id)
        else:
            job.state = "delayed"
            job.available_at = now
            job.leased_until = now + timedelta(seconds=LEASE_SEC)
            requeued.append(job.id)
    db.commit()
    return requeued, failed


def _clip(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    return error[:LAST_ERROR_MAX_CHARS]
