# sync_events repository：只追加，带短窗口去重

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from synchub.core.errors import DuplicateEventSkipped, NotFoundError
from synchub.db.model.sync_event import SyncEvent
from synchub.utils.clock import now_utc
from synchub.utils.serialization import to_jsonable


def get(db: Session, event_id: int) -> Optional[SyncEvent]:
    return db.get(SyncEvent, event_id)


def get_batch(db: Session, batch_id: int) -> SyncEvent:
    row = db.get(SyncEvent, batch_id)
    if row is None or row.action != "batch_sync":
        raise NotFoundError(f"batch {batch_id} not found")
    return row


def latest_for(db: Session, mapping_id: int, action: str, *, since: datetime) -> Optional[SyncEvent]:
    stmt = (
        select(SyncEvent)
        .where(
            SyncEvent.mapping_id == mapping_id,
            SyncEvent.action == action,
            SyncEvent.created_at >= since,
        )
        .order_by(SyncEvent.created_at.desc(), SyncEvent.id.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def list_for_mapping(db: Session, mapping_id: int, *, limit: int = 50) -> list[SyncEvent]:
    stmt = (
        select(SyncEvent)
        .where(SyncEvent.mapping_id == mapping_id)
        .order_by(SyncEvent.created_at.desc(), SyncEvent.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def insert(
    db: Session,
    *,
    mapping_id: Optional[int],
    action: str,
    status: str,
    message: Optional[str] = None,
    details: Any = None,
    actor: str = "system",
    dedup_window_sec: int = 60,
    now: Optional[datetime] = None,
) -> SyncEvent:
    """
    写一条事件。mapping_id 非空时先查 (mapping_id, action) 在窗口内的最近一条：
    状态相同则抛 DuplicateEventSkipped（带上已有事件），不写库。
    批次级事件（mapping_id 为空）不参与去重。
    """
    now = now or now_utc()

    if mapping_id is not None and dedup_window_sec > 0:
        recent = latest_for(db, mapping_id, action, since=now - timedelta(seconds=dedup_window_sec))
        if recent is not None and recent.status == status:
            raise DuplicateEventSkipped(recent)

    row = SyncEvent(
        mapping_id=mapping_id,
        action=action,
        status=status,
        message=message,
        details=to_jsonable(details) if details is not None else None,
        actor=actor,
        created_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row
