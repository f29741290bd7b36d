from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import String, Integer, Text, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from synchub.db.base import Base, JSONType


JOB_TYPES = ("inventory", "price", "all")
# waiting -> active -> completed | failed | delayed(-> active ...)；waiting/delayed 可被取消为 skipped
JOB_STATES = ("waiting", "active", "completed", "failed", "delayed", "skipped")


class SyncJob(Base):

    __tablename__ = "sync_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    store_product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    warehouse_product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    location_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    state: Mapped[str] = mapped_column(String(16), nullable=False, default="waiting")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    available_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    leased_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)   # sweeper 投递后的冷却期
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    batch_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)   # 批次 = batch_sync 事件 id
    result: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_sync_jobs_state_available", "state", "available_at"),
        Index("ix_sync_jobs_batch_id", "batch_id"),
    )
