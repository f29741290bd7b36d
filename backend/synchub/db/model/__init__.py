# 聚合导入所有模型，供 Alembic 发现

from .mapping import ProductMapping, MAPPING_STATUSES
from .sync_event import SyncEvent, SYNC_ACTIONS, EVENT_STATUSES
from .sync_job import SyncJob, JOB_TYPES, JOB_STATES

__all__ = [
    "ProductMapping", "MAPPING_STATUSES",
    "SyncEvent", "SYNC_ACTIONS", "EVENT_STATUSES",
    "SyncJob", "JOB_TYPES", "JOB_STATES",
]
