from __future__ import annotations

from datetime import date

from synchub.db.model.sync_event import SyncEvent
from synchub.repository import mapping_repo


def _product(wid, name, **extra):
    return dict({"idNhanh": wid, "name": name, "code": f"SKU-{wid}", "price": 100000,
                 "inventory": {"remain": 6}}, **extra)


def test_creates_only_unmapped_products(db, discovery, warehouse, store) -> None:
    mapping_repo.upsert(db, "1", {"idNhanh": "A"})
    warehouse.recent = [_product("A", "Old"), _product("B", "New B"), _product("C", "New C")]

    created = discovery.discover()

    assert created == 2
    titles = [c[1] for c in store.store_calls("create_product")]
    assert titles == ["New B", "New C"]
    assert store.store_calls("create_product")[0][2:] == ("100000", 6, "SKU-B")
    assert mapping_repo.existing_warehouse_ids(db) == {"A", "B", "C"}


def test_one_failure_does_not_stop_the_rest(db, discovery, warehouse, store) -> None:
    warehouse.recent = [_product("B", "Bad"), _product("C", "Good"), _product("D", "Good too")]
    store.fail_create_titles.add("Bad")

    assert discovery.discover() == 2
    assert mapping_repo.find_by_warehouse_id(db, "B") is None
    assert mapping_repo.find_by_warehouse_id(db, "C").status == "pending"


def test_records_discover_event(db, discovery, warehouse) -> None:
    warehouse.recent = [_product("B", "New B")]
    discovery.discover(actor="cron")

    event = db.query(SyncEvent).filter_by(action="discover_product").one()
    assert event.status == "success"
    assert event.actor == "cron"
    assert event.details["warehouseProductId"] == "B"


def test_mapping_is_keyed_by_variant_id(db, discovery, warehouse) -> None:
    warehouse.recent = [_product("B", "New B")]
    discovery.discover()
    mapping = mapping_repo.find_by_warehouse_id(db, "B")
    assert mapping.store_product_id == "90010"


def test_duplicates_in_feed_are_created_once(discovery, warehouse, store) -> None:
    warehouse.recent = [_product("B", "New B"), _product("B", "New B again")]
    assert discovery.discover() == 1
    assert len(store.store_calls("create_product")) == 1


def test_defaults_when_price_and_stock_missing(discovery, warehouse, store) -> None:
    warehouse.recent = [{"idNhanh": "Z"}]
    discovery.discover()
    _, title, price, qty, sku = store.store_calls("create_product")[0]
    assert (title, price, qty, sku) == ("Nhanh product Z", "0", 0, "NHANH-Z")


def test_lookback_window(discovery, warehouse) -> None:
    discovery.discover()
    assert warehouse.updated_from == date(2026, 2, 23)
