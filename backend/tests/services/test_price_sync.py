from __future__ import annotations

import json

import pytest

from synchub.core.errors import ValidationError
from synchub.db.model.sync_event import SyncEvent
from synchub.integrations.shopify import ShopifyClientError
from synchub.repository import mapping_repo


def _setup(db, store, snapshot):
    mapping_repo.upsert(db, "123", snapshot)
    store.add_variant("123", price="99.00", title="Ao thun")


def test_nested_web_price_is_pushed_as_string(db, price_worker, store) -> None:
    _setup(db, store, {"idNhanh": "456", "prices": {"web": 150000, "default": 160000}})

    result = price_worker.run("123", "456")

    assert result.success
    assert store.store_calls("update_variant_price") == [("update_variant_price", "123", "150000")]
    db.expire_all()
    event = db.query(SyncEvent).filter_by(action="sync_price").one()
    assert event.details["before"] == "99.00"
    assert event.details["after"] == "150000"
    assert event.details["priceSource"] == "prices.web"


def test_flat_price_takes_precedence(db, price_worker, store) -> None:
    _setup(db, store, {"price": "120000.50", "prices": {"web": 150000}})
    price_worker.run("123")
    assert store.store_calls("update_variant_price")[0][2] == "120000.5"


def test_default_price_used_when_web_missing(db, price_worker, store) -> None:
    _setup(db, store, json.dumps({"prices": {"web": 0, "default": 80000}}))
    price_worker.run("123")
    assert store.store_calls("update_variant_price")[0][2] == "80000"


def test_no_price_fails_before_any_store_call(db, price_worker, store) -> None:
    _setup(db, store, {})

    with pytest.raises(ValidationError, match="no valid price"):
        price_worker.run("123")

    assert store.calls == []
    db.expire_all()
    assert mapping_repo.get(db, "123").status == "pending"


def test_store_rejection_is_not_retryable(db, price_worker, store) -> None:
    _setup(db, store, {"price": 1000})
    store.fail_with = ShopifyClientError("422 client error", status_code=422, body='{"errors":"bad"}')

    result = price_worker.run("123")

    assert not result.success
    assert not result.retryable
    db.expire_all()
    assert mapping_repo.get(db, "123").status == "error"
