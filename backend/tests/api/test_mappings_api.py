from synchub.repository import mapping_repo


def test_requires_bearer_token(client):
    resp = client.get("/api/v1/mappings")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
    assert resp.json()["error"] == "AuthError"


def test_rejects_bad_token(client):
    resp = client.get("/api/v1/mappings", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_health_is_public(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200


def test_upsert_get_and_list(client, auth_headers):
    body = {"warehouseSnapshot": {"idNhanh": "456", "name": "Ao thun"}}
    created = client.put("/api/v1/mappings/123", json=body, headers=auth_headers)
    assert created.status_code == 200
    assert created.json()["status"] == "pending"

    updated = client.put("/api/v1/mappings/123", json=dict(body, status="success"), headers=auth_headers)
    assert updated.json()["id"] == created.json()["id"]

    got = client.get("/api/v1/mappings/123", headers=auth_headers).json()
    assert got["warehouseSnapshot"]["idNhanh"] == "456"
    assert [m["storeProductId"] for m in client.get("/api/v1/mappings", headers=auth_headers).json()] == ["123"]
    assert client.get("/api/v1/mappings?status=error", headers=auth_headers).json() == []


def test_status_update_and_delete(client, auth_headers, db):
    mapping_repo.upsert(db, "123", {"idNhanh": "456"})

    resp = client.patch("/api/v1/mappings/123/status", json={"status": "error", "error": "boom"}, headers=auth_headers)
    assert resp.json()["lastError"] == "boom"

    assert client.delete("/api/v1/mappings/123", headers=auth_headers).status_code == 204
    missing = client.get("/api/v1/mappings/123", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "NotFoundError"


def test_invalid_status_is_rejected(client, auth_headers):
    resp = client.put("/api/v1/mappings/1", json={"warehouseSnapshot": {}, "status": "done"}, headers=auth_headers)
    assert resp.status_code == 422


def test_events_for_mapping(client, auth_headers, db, sync_log):
    mapping = mapping_repo.upsert(db, "123", {"idNhanh": "456"})
    sync_log.record(mapping.id, "sync_inventory", "success", "inventory 0 -> 42")

    events = client.get("/api/v1/mappings/123/events", headers=auth_headers).json()
    assert [(e["action"], e["status"]) for e in events] == [("sync_inventory", "success")]
