from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from synchub.core.errors import NotFoundError, ValidationError
from synchub.repository import sync_job_repo


T0 = datetime(2026, 3, 2, 9, 0, 0)


def _job(db, **kw):
    params = dict(type="inventory", store_product_id="123", warehouse_product_id="456",
                  location_id="L1", max_attempts=3, now=T0)
    params.update(kw)
    return sync_job_repo.create(db, **params)


def test_create_starts_waiting(db) -> None:
    job = _job(db)
    assert job.state == "waiting"
    assert job.attempts == 0
    assert job.available_at == T0


def test_create_rejects_unknown_type(db) -> None:
    with pytest.raises(ValidationError):
        _job(db, type="stock")


def test_claim_moves_to_active_and_counts_attempt(db) -> None:
    job = _job(db)
    claimed = sync_job_repo.claim(db, job.id, now=T0)
    assert claimed.state == "active"
    assert claimed.attempts == 1
    # 已经 active 的任务不能再被认领
    assert sync_job_repo.claim(db, job.id, now=T0) is None


def test_cancel_only_touches_unstarted_jobs(db) -> None:
    waiting = _job(db)
    active = _job(db, store_product_id="124")
    sync_job_repo.claim(db, active.id, now=T0)

    assert sync_job_repo.cancel(db, [waiting.id, active.id], now=T0) == 1
    assert sync_job_repo.get(db, waiting.id).state == "skipped"
    assert sync_job_repo.get(db, active.id).state == "active"
    assert sync_job_repo.claim(db, waiting.id, now=T0) is None


def test_mark_delayed_sets_available_at(db) -> None:
    job = _job(db)
    sync_job_repo.claim(db, job.id, now=T0)
    sync_job_repo.mark_delayed(db, job, "503", 10, now=T0)
    assert job.state == "delayed"
    assert job.available_at == T0 + timedelta(seconds=10)


def test_lease_due_returns_only_due_jobs_once(db) -> None:
    due = _job(db)
    later = _job(db, store_product_id="124")
    sync_job_repo.claim(db, later.id, now=T0)
    sync_job_repo.mark_delayed(db, later, "503", 60, now=T0)

    assert sync_job_repo.lease_due(db, 10, now=T0 + timedelta(seconds=1)) == [due.id]
    # 刚被捡走的任务下一轮不会再出现
    assert sync_job_repo.lease_due(db, 10, now=T0 + timedelta(seconds=2)) == []
    assert sync_job_repo.lease_due(db, 10, now=T0 + timedelta(seconds=61)) == [later.id]


def test_claim_waits_for_available_at(db) -> None:
    job = _job(db)
    sync_job_repo.claim(db, job.id, now=T0)
    sync_job_repo.mark_delayed(db, job, "503", 10, now=T0)

    assert sync_job_repo.claim(db, job.id, now=T0 + timedelta(seconds=9)) is None
    assert sync_job_repo.get(db, job.id).attempts == 1
    assert sync_job_repo.claim(db, job.id, now=T0 + timedelta(seconds=10)).attempts == 2


def test_leased_job_can_still_be_claimed(db) -> None:
    job = _job(db)
    assert sync_job_repo.lease_due(db, 10, now=T0) == [job.id]
    claimed = sync_job_repo.claim(db, job.id, now=T0)
    assert claimed.state == "active"
    assert claimed.leased_until is None


def test_reclaim_stale_requeues_or_fails_lost_jobs(db) -> None:
    fresh = _job(db)
    stale = _job(db, store_product_id="124")
    spent = _job(db, store_product_id="125")
    sync_job_repo.claim(db, stale.id, now=T0)
    spent.attempts = spent.max_attempts - 1
    db.commit()
    sync_job_repo.claim(db, spent.id, now=T0)
    sync_job_repo.claim(db, fresh.id, now=T0 + timedelta(seconds=600))

    requeued, failed = sync_job_repo.reclaim_stale(db, 900, 10, now=T0 + timedelta(seconds=900))

    assert (requeued, failed) == ([stale.id], [spent.id])
    db.expire_all()
    assert sync_job_repo.get(db, fresh.id).state == "active"
    recovered = sync_job_repo.get(db, stale.id)
    assert (recovered.state, recovered.attempts) == ("delayed", 1)
    assert "worker lost" in recovered.last_error
    assert sync_job_repo.get(db, spent.id).state == "failed"


def test_get_missing_job(db) -> None:
    with pytest.raises(NotFoundError):
        sync_job_repo.get(db, 42)


def test_assign_batch_links_jobs(db) -> None:
    a = _job(db)
    b = _job(db, store_product_id="124")
    _job(db, store_product_id="125")

    sync_job_repo.assign_batch(db, [a.id, b.id], 77)

    db.expire_all()
    assert [sync_job_repo.get(db, j).batch_id for j in (a.id, b.id)] == [77, 77]
    assert sync_job_repo.get_many(db, [a.id, 999]) == {a.id: a}
