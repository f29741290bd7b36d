from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import String, Integer, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from synchub.db.base import Base, JSONType


SYNC_ACTIONS = ("sync_inventory", "sync_price", "batch_sync", "discover_product")
EVENT_STATUSES = ("success", "error", "scheduled", "queued")


"""
  sync_events 表：只追加的同步审计日志
  - mapping_id 为空表示批次级事件（batch_sync）
  - 写入后不再修改
 """
class SyncEvent(Base):

    __tablename__ = "sync_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mapping_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("product_mappings.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        # 去重查询：(mapping_id, action) 最近一条
        Index("ix_sync_events_mapping_action_created", "mapping_id", "action", "created_at"),
        Index("ix_sync_events_action_created", "action", "created_at"),
    )
