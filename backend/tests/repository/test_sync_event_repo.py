from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from synchub.core.errors import DuplicateEventSkipped, NotFoundError
from synchub.db.model.sync_event import SyncEvent
from synchub.repository import mapping_repo, sync_event_repo


T0 = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture()
def mapping_id(db) -> int:
    return mapping_repo.upsert(db, "123", {"idNhanh": "456"}).id


def _insert(db, mapping_id, status="success", at=T0, action="sync_inventory"):
    return sync_event_repo.insert(
        db, mapping_id=mapping_id, action=action, status=status, message="m", now=at,
    )


def test_same_status_inside_window_is_skipped(db, mapping_id) -> None:
    first = _insert(db, mapping_id)

    with pytest.raises(DuplicateEventSkipped) as exc:
        _insert(db, mapping_id, at=T0 + timedelta(seconds=30))

    assert exc.value.existing.id == first.id
    assert db.query(SyncEvent).count() == 1


def test_status_change_inside_window_is_written(db, mapping_id) -> None:
    _insert(db, mapping_id, status="success")
    _insert(db, mapping_id, status="error", at=T0 + timedelta(seconds=5))
    assert db.query(SyncEvent).count() == 2


def test_same_status_after_window_is_written(db, mapping_id) -> None:
    _insert(db, mapping_id)
    _insert(db, mapping_id, at=T0 + timedelta(seconds=61))
    assert db.query(SyncEvent).count() == 2


def test_dedup_is_per_action(db, mapping_id) -> None:
    _insert(db, mapping_id, action="sync_inventory")
    _insert(db, mapping_id, action="sync_price")
    assert db.query(SyncEvent).count() == 2


def test_batch_level_events_are_never_deduplicated(db) -> None:
    _insert(db, None, status="scheduled", action="batch_sync")
    _insert(db, None, status="scheduled", action="batch_sync")
    assert db.query(SyncEvent).count() == 2


def test_details_are_made_json_safe(db, mapping_id) -> None:
    from decimal import Decimal

    row = sync_event_repo.insert(
        db, mapping_id=mapping_id, action="sync_price", status="success",
        details={"after": Decimal("150000"), "at": T0}, now=T0,
    )
    assert row.details == {"after": "150000", "at": T0.isoformat()}


def test_get_batch_requires_batch_event(db, mapping_id) -> None:
    inventory_event = _insert(db, mapping_id)
    with pytest.raises(NotFoundError):
        sync_event_repo.get_batch(db, inventory_event.id)
    with pytest.raises(NotFoundError):
        sync_event_repo.get_batch(db, 999)
