# 同步接口：单商品任务 / 批次 / 新品发现
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, status
from kombu.exceptions import OperationalError as BrokerOperationalError
from pydantic import BaseModel, Field

from synchub.api.v1.deps import actor_of, get_current_principal
from synchub.core.errors import QueueUnavailableError, ValidationError
from synchub.db.session import session_scope
from synchub.integrations.nhanh import extract_warehouse_id
from synchub.repository import mapping_repo
from synchub.services.batch_coordinator import BatchCoordinator
from synchub.services.factory import get_batch_coordinator, get_discovery, get_job_queue
from synchub.services.job_queue import JobQueue
from synchub.services.product_discovery import ProductDiscovery

router = APIRouter(prefix="/sync", tags=["sync"])

JobType = Literal["inventory", "price", "all"]


class JobCreate(BaseModel):
    storeProductId: str
    type: JobType = "inventory"
    warehouseProductId: Optional[str] = None    # 不传就从 mapping 快照里取
    locationId: Optional[str] = None


class JobOut(BaseModel):
    jobId: int
    type: str
    storeProductId: str
    warehouseProductId: str
    locationId: Optional[str] = None
    state: str
    attempts: int
    maxAttempts: int
    lastError: Optional[str] = None
    batchId: Optional[int] = None
    result: Optional[Any] = None


class BatchCreate(BaseModel):
    storeProductIds: List[str] = Field(..., min_length=1)
    type: JobType = "inventory"
    locationId: Optional[str] = None


class BatchOut(BaseModel):
    batchId: int
    queued: List[Dict[str, Any]]
    failures: Dict[str, str]


@router.post("/jobs", response_model=JobOut, status_code=status.HTTP_201_CREATED)
def create_job(body: JobCreate, queue: JobQueue = Depends(get_job_queue)) -> JobOut:
    warehouse_product_id = body.warehouseProductId
    if not warehouse_product_id:
        with session_scope(queue.session_factory) as db:
            mapping = mapping_repo.get(db, body.storeProductId)
            warehouse_product_id = extract_warehouse_id(mapping.warehouse_snapshot)
        if not warehouse_product_id:
            raise ValidationError("missing or unparsable warehouse product id in snapshot")

    job_id = queue.enqueue(body.type, body.storeProductId, warehouse_product_id, body.locationId)
    return _job_out(queue.get(job_id))


@router.get("/jobs/{job_id}", response_model=JobOut)
def get_job(job_id: int, queue: JobQueue = Depends(get_job_queue)) -> JobOut:
    return _job_out(queue.get(job_id))


@router.post("/jobs/{job_id}/cancel")
def cancel_job(job_id: int, queue: JobQueue = Depends(get_job_queue)) -> Dict[str, Any]:
    cancelled = queue.cancel(job_id)
    return {"jobId": job_id, "cancelled": cancelled, "state": queue.state(job_id)}


@router.post("/batches", response_model=BatchOut, status_code=status.HTTP_201_CREATED)
def start_batch(
    body: BatchCreate,
    principal: Dict[str, Any] = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
) -> BatchOut:
    started = coordinator.start_batch(
        body.storeProductIds, body.type, location_id=body.locationId, actor=actor_of(principal),
    )
    return BatchOut(batchId=started.batch_id, queued=started.queued, failures=started.failures)


@router.post("/batches/async", status_code=status.HTTP_202_ACCEPTED)
def start_batch_async(
    body: BatchCreate,
    principal: Dict[str, Any] = Depends(get_current_principal),
) -> Dict[str, Any]:
    from synchub.orchestration import sync_tasks

    args = [body.storeProductIds, body.type, body.locationId, actor_of(principal)]
    try:
        handle = sync_tasks.kick_batch_sync.apply_async(args=args, retry=False)
    except BrokerOperationalError as e:
        raise QueueUnavailableError(f"job broker unreachable: {e}") from e
    return {"taskId": handle.id, "total": len(body.storeProductIds)}


@router.get("/batches/{batch_id}")
def get_batch_status(batch_id: int, coordinator: BatchCoordinator = Depends(get_batch_coordinator)) -> Dict[str, Any]:
    return coordinator.get_batch_status(batch_id)


@router.post("/batches/{batch_id}/cancel")
def cancel_batch(batch_id: int, coordinator: BatchCoordinator = Depends(get_batch_coordinator)) -> Dict[str, Any]:
    return {"batchId": batch_id, "cancelled": coordinator.cancel_batch(batch_id)}


@router.post("/discover")
def discover(
    principal: Dict[str, Any] = Depends(get_current_principal),
    discovery: ProductDiscovery = Depends(get_discovery),
) -> Dict[str, Any]:
    return {"created": discovery.discover(actor=actor_of(principal))}


def _job_out(job) -> JobOut:
    return JobOut(
        jobId=job.id,
        type=job.type,
        storeProductId=job.store_product_id,
        warehouseProductId=job.warehouse_product_id,
        locationId=job.location_id,
        state=job.state,
        attempts=job.attempts,
        maxAttempts=job.max_attempts,
        lastError=job.last_error,
        batchId=job.batch_id,
        result=job.result,
    )
