# 全库统一的“现在”：naive UTC，与数据库 DateTime 列对齐。
# 服务都接收一个可注入的 clock，测试里换成可拨动的假时钟。
from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_ago(days: int, clock: Clock = now_utc) -> date:
    """回看窗口的起始日期（新品发现按天传 updatedFrom）。"""
    return (clock() - timedelta(days=days)).date()
