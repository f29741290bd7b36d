from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import String, Integer, Text, DateTime, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from synchub.db.base import Base, JSONType


MAPPING_STATUSES = ("pending", "success", "error")


"""
  product_mappings 表
  - store_product_id: Shopify 侧 id（变体 id），唯一键，upsert 只认它
  - warehouse_snapshot: 最近一次拉到的 Nhanh 商品 JSON（里面的 idNhanh / id 就是仓库 id）
 """
class ProductMapping(Base):

    __tablename__ = "product_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_product_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    warehouse_snapshot: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # naive UTC，由 repository 写入（now_utc），不依赖数据库时区
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("status IN ('pending','success','error')", name="status"),
    )

    def __repr__(self) -> str:
        return f"<ProductMapping {self.store_product_id} status={self.status}>"
