# Celery 应用：队列、路由、beat

from celery import Celery
from kombu import Exchange, Queue
from synchub.core.config import settings
from synchub.core.logging import configure_logging

configure_logging()


'''
初始化 Celery 应用/实例
   - Beat: 1 台（定时发现新品 + 扫到期任务）
   - Worker: 并发 = SYNC_WORKER_CONCURRENCY
'''
celery_app = Celery(
    "synchub",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "synchub.orchestration.sync_tasks",
    ],
)


celery_app.conf.update(
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,                             # 内部还是存 UTC
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,    # 一个 worker 一次只取一个任务
    task_acks_late=True,             # 执行完再确认，worker crash 后任务会重投
    worker_concurrency=settings.SYNC_WORKER_CONCURRENCY,
    broker_heartbeat=30,
    broker_pool_limit=10,
    result_expires=24 * 3600,
)


'''
队列拆分：
   - sync_io: 单商品同步（Nhanh + Shopify I/O，受限流约束）
   - orchestrator: 批次提交、新品发现、到期任务扫表
'''
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("sync_io", Exchange("sync_io"), routing_key="sync_io"),
    Queue("orchestrator", Exchange("orchestrator"), routing_key="orchestrator"),
)
celery_app.conf.task_default_queue = "default"

celery_app.conf.task_routes = {
    "synchub.orchestration.sync_tasks.run_sync_job": {"queue": "sync_io"},
    "synchub.orchestration.sync_tasks.kick_batch_sync": {"queue": "orchestrator"},
    "synchub.orchestration.sync_tasks.run_discovery": {"queue": "orchestrator"},
    "synchub.orchestration.sync_tasks.sweep_due_jobs": {"queue": "orchestrator"},
}


celery_app.conf.beat_schedule = {
    # 定时发现 Nhanh 新品
    "discover-new-products": {
        "task": "synchub.orchestration.sync_tasks.run_discovery",
        "schedule": settings.DISCOVERY_INTERVAL_SEC,
    },
    # 兜底：重新投递到期但没人执行的 waiting/delayed 任务
    "sweep-due-jobs": {
        "task": "synchub.orchestration.sync_tasks.sweep_due_jobs",
        "schedule": settings.SYNC_SWEEP_INTERVAL_SEC,
    },
}
