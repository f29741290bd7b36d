# product_mappings repository：upsert 是唯一的创建路径

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Set

from sqlalchemy import delete as sa_delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from synchub.core.errors import NotFoundError, ValidationError
from synchub.db.model.mapping import ProductMapping, MAPPING_STATUSES
from synchub.integrations.nhanh.normalizers import extract_warehouse_id
from synchub.utils.clock import now_utc

LAST_ERROR_MAX_CHARS = 1000


# ---------- Query ----------
def find(db: Session, store_product_id: str) -> Optional[ProductMapping]:
    stmt = select(ProductMapping).where(ProductMapping.store_product_id == str(store_product_id))
    return db.scalars(stmt).first()


def get(db: Session, store_product_id: str) -> ProductMapping:
    row = find(db, store_product_id)
    if row is None:
        raise NotFoundError(f"mapping {store_product_id} not found")
    return row


def list_all(db: Session, *, status: Optional[str] = None) -> list[ProductMapping]:
    stmt = select(ProductMapping)
    if status:
        stmt = stmt.where(ProductMapping.status == status)
    stmt = stmt.order_by(ProductMapping.id.asc())
    return list(db.scalars(stmt))


def existing_warehouse_ids(db: Session) -> Set[str]:
    """扫描所有快照，收集已经映射过的仓库商品 id（快照解析失败的行跳过）。"""
    ids: Set[str] = set()
    for snapshot in db.scalars(select(ProductMapping.warehouse_snapshot)):
        wid = extract_warehouse_id(snapshot)
        if wid:
            ids.add(wid)
    return ids


def find_by_warehouse_id(db: Session, warehouse_product_id: str) -> Optional[ProductMapping]:
    wanted = str(warehouse_product_id)
    for row in db.scalars(select(ProductMapping).order_by(ProductMapping.id.asc())):
        if extract_warehouse_id(row.warehouse_snapshot) == wanted:
            return row
    return None


# ---------- Mutations ----------
def upsert(
    db: Session,
    store_product_id: str,
    warehouse_snapshot: Any,
    status: str = "pending",
    error: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> ProductMapping:
    """有则覆盖快照/状态（保留 created_at），无则插入；并发插入撞唯一键时退回更新。"""
    _validate_status(status)
    key = str(store_product_id)
    now = now or now_utc()
    values = dict(
        warehouse_snapshot=warehouse_snapshot,
        status=status,
        last_error=_clip(error),
        updated_at=now,
    )

    upd = update(ProductMapping).where(ProductMapping.store_product_id == key).values(**values)
    res = db.execute(upd)
    if res.rowcount:
        db.commit()
        return _reload(db, key)

    try:
        db.execute(insert(ProductMapping).values(store_product_id=key, created_at=now, **values))
        db.commit()
    except IntegrityError:
        db.rollback()
        db.execute(upd)
        db.commit()

    return _reload(db, key)


def set_status(
    db: Session,
    store_product_id: str,
    status: str,
    error: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> ProductMapping:
    """写状态；success 时 last_error 一律清空。"""
    _validate_status(status)
    key = str(store_product_id)
    stmt = (
        update(ProductMapping)
        .where(ProductMapping.store_product_id == key)
        .values(
            status=status,
            last_error=None if status == "success" else _clip(error),
            updated_at=now or now_utc(),
        )
    )
    res = db.execute(stmt)
    if not res.rowcount:
        db.rollback()
        raise NotFoundError(f"mapping {key} not found")
    db.commit()
    return _reload(db, key)


def set_snapshot(db: Session, store_product_id: str, snapshot: Any, *, now: Optional[datetime] = None) -> None:
    """只刷新缓存的仓库快照，不动状态。"""
    stmt = (
        update(ProductMapping)
        .where(ProductMapping.store_product_id == str(store_product_id))
        .values(warehouse_snapshot=snapshot, updated_at=now or now_utc())
    )
    res = db.execute(stmt)
    if not res.rowcount:
        db.rollback()
        raise NotFoundError(f"mapping {store_product_id} not found")
    db.commit()


def delete(db: Session, store_product_id: str) -> None:
    res = db.execute(sa_delete(ProductMapping).where(ProductMapping.store_product_id == str(store_product_id)))
    if not res.rowcount:
        db.rollback()
        raise NotFoundError(f"mapping {store_product_id} not found")
    db.commit()


# ---------- Helpers ----------
def _reload(db: Session, key: str) -> ProductMapping:
    row = find(db, key)
    if row is None:
        raise RuntimeError(f"failed to upsert mapping {key}")
    db.refresh(row)
    return row


def _clip(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    return error[:LAST_ERROR_MAX_CHARS]


def _validate_status(status: str) -> None:
    if status not in MAPPING_STATUSES:
        raise ValidationError(f"invalid mapping status: {status}")
