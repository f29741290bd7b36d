from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from synchub.core.config import SyncConfig
from synchub.core.errors import DuplicateEventSkipped, ValidationError
from synchub.db.model.sync_event import SyncEvent, SYNC_ACTIONS, EVENT_STATUSES
from synchub.db.session import session_scope
from synchub.repository import sync_event_repo
from synchub.utils.clock import now_utc

logger = logging.getLogger(__name__)


class SyncLog:
    """
    同步审计日志。
    同一 (mapping, action) 在去重窗口内状态没变就不再写，直接返回已有事件；
    并发写入仍可能各写一条，日志只用于排查，不作为权威状态。
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: SyncConfig,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.clock = clock

    def record(
        self,
        mapping_id: Optional[int],
        action: str,
        status: str,
        message: Optional[str] = None,
        *,
        details: Any = None,
        actor: Optional[str] = None,
    ) -> SyncEvent:
        if action not in SYNC_ACTIONS:
            raise ValidationError(f"invalid sync action: {action}")
        if status not in EVENT_STATUSES:
            raise ValidationError(f"invalid sync event status: {status}")

        with session_scope(self.session_factory) as db:
            try:
                return sync_event_repo.insert(
                    db,
                    mapping_id=mapping_id,
                    action=action,
                    status=status,
                    message=message,
                    details=details,
                    actor=actor or self.config.actor,
                    dedup_window_sec=self.config.dedup_window_sec,
                    now=self.clock(),
                )
            except DuplicateEventSkipped as dup:
                logger.debug(
                    "sync_log.dedup_skip mapping_id=%s action=%s status=%s existing_id=%s",
                    mapping_id, action, status, dup.existing.id,
                )
                return dup.existing
