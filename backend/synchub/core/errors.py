"""
同步引擎统一异常类型。
  - 集成层（shopify / nhanh）的异常都继承 UpstreamError，业务层只需认这一层。
  - DuplicateEventSkipped 不是错误：事件仓储在去重命中时抛出，由 sync_log 吞掉。
"""

from __future__ import annotations

from typing import Any, Optional


class SyncError(Exception):
    """Base for all sync engine errors."""


class AuthError(SyncError):
    """Missing/invalid caller credentials. Never retried."""


class ValidationError(SyncError):
    """Missing field, unparsable snapshot or no usable value. Never retried, mapping untouched."""


class NotFoundError(SyncError):
    """Mapping, job or batch does not exist."""


class UpstreamError(SyncError):
    """Non-2xx or network failure talking to Store or Warehouse."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable

    def snippet(self, limit: int = 100) -> str:
        """截断后的响应体（没有 body 时退回异常消息），写入 mapping.last_error。"""
        text = self.body if self.body else str(self)
        return text[:limit]


class QueueUnavailableError(SyncError):
    """The job broker itself is unreachable; fatal for the enqueue call."""


class DuplicateEventSkipped(SyncError):
    """Same (mapping, action, status) already logged inside the dedup window."""

    def __init__(self, existing: Any) -> None:
        super().__init__("duplicate sync event skipped")
        self.existing = existing

