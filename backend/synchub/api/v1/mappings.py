# 映射管理接口：列表 / 单条 / upsert / 改状态 / 删除
from datetime import datetime
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from synchub.db.session import get_db
from synchub.repository import mapping_repo, sync_event_repo
from synchub.utils.clock import now_utc

router = APIRouter(prefix="/mappings", tags=["mappings"])

MappingStatus = Literal["pending", "success", "error"]


class MappingOut(BaseModel):
    id: int
    storeProductId: str
    warehouseSnapshot: Optional[Any] = None
    status: MappingStatus
    lastError: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime


class MappingUpsert(BaseModel):
    warehouseSnapshot: Any = Field(..., description="Nhanh 商品 JSON，至少包含 idNhanh 或 id")
    status: MappingStatus = "pending"
    lastError: Optional[str] = None


class MappingStatusUpdate(BaseModel):
    status: MappingStatus
    error: Optional[str] = None


class SyncEventOut(BaseModel):
    id: int
    mappingId: Optional[int] = None
    action: str
    status: str
    message: Optional[str] = None
    details: Optional[Any] = None
    actor: str
    createdAt: datetime


@router.get("", response_model=List[MappingOut])
def list_mappings(
    status_filter: Optional[MappingStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
) -> List[MappingOut]:
    return [_to_out(row) for row in mapping_repo.list_all(db, status=status_filter)]


@router.get("/{store_product_id}", response_model=MappingOut)
def get_mapping(store_product_id: str = Path(...), db: Session = Depends(get_db)) -> MappingOut:
    return _to_out(mapping_repo.get(db, store_product_id))


@router.put("/{store_product_id}", response_model=MappingOut)
def upsert_mapping(
    body: MappingUpsert,
    store_product_id: str = Path(...),
    db: Session = Depends(get_db),
) -> MappingOut:
    row = mapping_repo.upsert(
        db, store_product_id, body.warehouseSnapshot, body.status, body.lastError, now=now_utc(),
    )
    return _to_out(row)


@router.patch("/{store_product_id}/status", response_model=MappingOut)
def update_mapping_status(
    body: MappingStatusUpdate,
    store_product_id: str = Path(...),
    db: Session = Depends(get_db),
) -> MappingOut:
    return _to_out(mapping_repo.set_status(db, store_product_id, body.status, body.error))


@router.delete("/{store_product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_mapping(store_product_id: str = Path(...), db: Session = Depends(get_db)) -> Response:
    mapping_repo.delete(db, store_product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{store_product_id}/events", response_model=List[SyncEventOut])
def list_mapping_events(
    store_product_id: str = Path(...),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> List[SyncEventOut]:
    mapping = mapping_repo.get(db, store_product_id)
    return [
        SyncEventOut(
            id=e.id, mappingId=e.mapping_id, action=e.action, status=e.status, message=e.message,
            details=e.details, actor=e.actor, createdAt=e.created_at,
        )
        for e in sync_event_repo.list_for_mapping(db, mapping.id, limit=limit)
    ]


def _to_out(row) -> MappingOut:
    return MappingOut(
        id=row.id,
        storeProductId=row.store_product_id,
        warehouseSnapshot=row.warehouse_snapshot,
        status=row.status,
        lastError=row.last_error,
        createdAt=row.created_at,
        updatedAt=row.updated_at,
    )
