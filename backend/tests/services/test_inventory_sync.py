from __future__ import annotations

import pytest

from synchub.core.errors import NotFoundError, ValidationError
from synchub.db.model.sync_event import SyncEvent
from synchub.integrations.nhanh import NhanhServerError
from synchub.integrations.shopify import ShopifyServerError
from synchub.repository import mapping_repo


@pytest.fixture()
def mapped(db, warehouse, store):
    mapping_repo.upsert(db, "123", {"idNhanh": "456"})
    warehouse.search_results["456"] = {
        "456": {"idNhanh": "456", "name": "Ao thun", "inventory": {"remain": 42}},
    }
    store.add_variant("123", inventory_item_id=777)
    return "123"


def _events(db, action="sync_inventory"):
    db.expire_all()
    return db.query(SyncEvent).filter(SyncEvent.action == action).order_by(SyncEvent.id).all()


def test_pushes_remain_to_location(db, mapped, inventory_worker, store) -> None:
    result = inventory_worker.run("123", "456", "L1")

    assert result.success
    assert store.store_calls("set_available") == [("set_available", 777, "L1", 42)]
    db.expire_all()
    assert mapping_repo.get(db, "123").status == "success"

    events = _events(db)
    assert len(events) == 1
    assert events[0].status == "success"
    assert events[0].details["after"] == 42
    assert events[0].details["resolution"] == "exact"


def test_rerun_inside_dedup_window_writes_no_new_event(db, mapped, inventory_worker, store, clock) -> None:
    inventory_worker.run("123", "456", "L1")
    clock.advance(10)
    inventory_worker.run("123", "456", "L1")

    assert len(store.store_calls("set_available")) == 2
    assert len(_events(db)) == 1


def test_refreshes_snapshot(db, mapped, inventory_worker) -> None:
    inventory_worker.run("123", "456", "L1")
    db.expire_all()
    assert mapping_repo.get(db, "123").warehouse_snapshot["inventory"] == {"remain": 42}


def test_snapshot_refresh_keeps_fields_missing_from_search(db, mapped, inventory_worker, warehouse) -> None:
    mapping_repo.set_snapshot(db, "123", {"idNhanh": "456", "price": 150000, "inventory": {"remain": 1}})
    inventory_worker.run("123", "456", "L1")
    db.expire_all()
    snapshot = mapping_repo.get(db, "123").warehouse_snapshot
    assert snapshot["price"] == 150000
    assert snapshot["inventory"] == {"remain": 42}
    assert snapshot["name"] == "Ao thun"


def test_default_location_is_used(mapped, inventory_worker, store) -> None:
    inventory_worker.run("123", "456")
    assert store.store_calls("set_available")[0][2] == "L1"


def test_depot_available_wins_for_mapped_location(mapped, inventory_worker, warehouse, store) -> None:
    warehouse.search_results["456"]["456"]["inventory"] = {
        "remain": 42, "depots": {"175080": {"available": 7, "remain": 9}},
    }
    inventory_worker.run("123", "456", "L2")
    assert store.store_calls("set_available") == [("set_available", 777, "L2", 7)]


def test_alternate_id_match(db, mapped, inventory_worker, warehouse, store) -> None:
    warehouse.search_results["456"] = {
        "x1": {"idNhanh": "999", "inventory": {"remain": 1}},
        "x2": {"idNhanh": "456", "inventory": {"remain": 5}},
    }
    inventory_worker.run("123", "456", "L1")
    assert store.store_calls("set_available")[0][3] == 5
    assert _events(db)[0].details["resolution"] == "alternate_id"


def test_fallback_to_first_result_is_marked(db, mapped, inventory_worker, warehouse, store) -> None:
    warehouse.search_results["456"] = {
        "x1": {"idNhanh": "999", "inventory": {"remain": 3}},
        "x2": {"idNhanh": "998", "inventory": {"remain": 4}},
    }
    inventory_worker.run("123", "456", "L1")
    assert store.store_calls("set_available")[0][3] == 3
    details = _events(db)[0].details
    assert details["resolution"] == "fallback_first"
    assert details["resolvedWarehouseId"] == "999"


def test_empty_search_result_is_validation_error(mapped, inventory_worker, warehouse, store) -> None:
    warehouse.search_results["456"] = {}
    with pytest.raises(ValidationError):
        inventory_worker.run("123", "456", "L1")
    assert store.store_calls("set_available") == []


def test_negative_and_fractional_remain_are_clamped(mapped, inventory_worker, warehouse, store) -> None:
    warehouse.search_results["456"]["456"]["inventory"] = {"remain": -3.7}
    inventory_worker.run("123", "456", "L1")
    assert store.store_calls("set_available")[0][3] == 0


@pytest.mark.parametrize("inventory", [{"remain": "n/a"}, {"depots": {}}])
def test_unreadable_remain_is_rejected_without_store_write(db, mapped, inventory_worker, warehouse, store, inventory):
    warehouse.search_results["456"]["456"]["inventory"] = inventory
    with pytest.raises(ValidationError):
        inventory_worker.run("123", "456", "L1")
    assert store.store_calls("set_available") == []
    db.expire_all()
    assert mapping_repo.get(db, "123").warehouse_snapshot == {"idNhanh": "456"}


def test_store_failure_marks_mapping_error(db, mapped, inventory_worker, store) -> None:
    store.fail_with = ShopifyServerError("503 server error", status_code=503, body="upstream " * 200, retryable=True)

    result = inventory_worker.run("123", "456", "L1")

    assert not result.success
    assert result.retryable
    db.expire_all()
    mapping = mapping_repo.get(db, "123")
    assert mapping.status == "error"
    assert mapping.last_error == ("upstream " * 200)[:100]
    events = _events(db)
    assert [e.status for e in events] == ["error"]
    assert events[0].details["statusCode"] == 503


def test_warehouse_failure_is_handled_like_store_failure(db, mapped, inventory_worker, warehouse, store) -> None:
    warehouse.fail_with = NhanhServerError("nhanh 502", status_code=502, body="bad gateway", retryable=True)
    result = inventory_worker.run("123", "456", "L1")
    assert not result.success and result.retryable
    assert store.calls == []
    db.expire_all()
    assert mapping_repo.get(db, "123").status == "error"


def test_missing_mapping(inventory_worker) -> None:
    with pytest.raises(NotFoundError):
        inventory_worker.run("nope", "456", "L1")


def test_missing_mapping_is_reported_before_missing_location(session_factory, warehouse, store, sync_log, clock):
    from synchub.core.config import SyncConfig
    from synchub.services.inventory_sync import InventorySyncWorker

    worker = InventorySyncWorker(session_factory, warehouse, store, SyncConfig(), sync_log, clock)
    with pytest.raises(NotFoundError):
        worker.run("nope", "456")


def test_missing_location_is_validation_error(db, mapped, session_factory, warehouse, store, sync_log, clock):
    from synchub.core.config import SyncConfig
    from synchub.services.inventory_sync import InventorySyncWorker

    worker = InventorySyncWorker(session_factory, warehouse, store, SyncConfig(), sync_log, clock)
    with pytest.raises(ValidationError):
        worker.run("123", "456")
    assert warehouse.search_calls == []
