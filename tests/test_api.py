"""End-to-end tests for the HTTP surface of the store core."""

from __future__ import annotations

import importlib
import uuid

import pytest
from fastapi.testclient import TestClient

from cardstock.core.rate_limit import limiter
from cardstock.security import create_access_token
from cardstock.security.auth import get_db_session


@pytest.fixture
def client(core, token_env, monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    main = importlib.import_module("cardstock.main")

    def _session():
        with core.session() as session:
            yield session

    main.app.dependency_overrides[get_db_session] = _session
    limiter.reset()
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def _create_store(client, core, owner: str = "alice") -> str:
    core.principal(owner)
    resp = client.post(
        "/api/rpc/create-organization",
        json={"name": "Moody Cards", "slug": "moody-cards"},
        headers=core.header(owner),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


class TestOperationalEndpoints:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_version(self, client):
        data = client.get("/api/version").json()
        assert set(data) == {"version", "build_date", "commit_sha"}

    def test_metrics_exposed(self, client):
        client.get("/api/health")
        resp = client.get("/api/metrics")
        assert resp.status_code == 200
        assert "http_request" in resp.text


def test_requests_without_token_are_rejected(client):
    resp = client.get("/api/organizations")
    assert resp.status_code == 401


def test_first_request_provisions_profile(client):
    token, _ = create_access_token(uuid.uuid4(), "Newcomer@MoodyCards.com")
    headers = {"Authorization": f"Bearer {token}"}

    resp = client.get("/api/profiles/me", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["email"] == "newcomer@moodycards.com"

    resp = client.patch("/api/profiles/me", json={"display_name": "Newcomer"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Newcomer"


def test_store_lifecycle(client, core):
    org_id = _create_store(client, core)
    alice = core.header("alice")

    resp = client.post(
        "/api/inventory",
        json={"organization_id": org_id, "card_name": "Charizard", "selling_price": "249.99"},
        headers=alice,
    )
    assert resp.status_code == 201, resp.text
    item_id = resp.json()["id"]
    assert resp.json()["status"] == "available"

    listed = client.get("/api/inventory", params={"organization_id": org_id}, headers=alice)
    assert [item["id"] for item in listed.json()] == [item_id]

    resp = client.post(
        "/api/invites",
        json={"organization_id": org_id, "email": "carol@moodycards.com"},
        headers=alice,
    )
    assert resp.status_code == 201, resp.text
    token = resp.json()["token"]
    assert resp.json()["state"] == "pending"

    core.principal("carol")
    carol = core.header("carol")
    resp = client.post("/api/rpc/accept-invite", json={"token": token}, headers=carol)
    assert resp.status_code == 201, resp.text
    assert resp.json()["role"] == "member"

    resp = client.post(
        "/api/rpc/mark-item-sold",
        json={"item_id": item_id, "price": "240.00", "buyer_email": "buyer@moodycards.com"},
        headers=carol,
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["sold_price"] == "240.00"

    resp = client.post(
        "/api/rpc/mark-item-sold",
        json={"item_id": item_id, "price": "240.00"},
        headers=carol,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "conflict"

    sales = client.get("/api/transactions", params={"organization_id": org_id}, headers=alice)
    assert len(sales.json()) == 1

    audit = client.get("/api/audit", params={"organization_id": org_id}, headers=carol)
    assert audit.json() == []
    audit = client.get("/api/audit", params={"organization_id": org_id}, headers=alice)
    assert {entry["table_name"] for entry in audit.json()} >= {"inventory", "transactions"}


def test_accept_invite_for_someone_else(client, core):
    org_id = _create_store(client, core)
    resp = client.post(
        "/api/invites",
        json={"organization_id": org_id, "email": "carol@moodycards.com"},
        headers=core.header("alice"),
    )
    token = resp.json()["token"]

    core.principal("mallory")
    resp = client.post(
        "/api/rpc/accept-invite", json={"token": token}, headers=core.header("mallory")
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "permission_denied"


def test_invalid_slug_is_rejected(client, core):
    core.principal("alice")
    resp = client.post(
        "/api/rpc/create-organization",
        json={"name": "Moody Cards", "slug": "Moody Cards"},
        headers=core.header("alice"),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


def test_sole_owner_cannot_leave(client, core):
    org_id = _create_store(client, core)
    resp = client.post(
        "/api/rpc/leave-organization",
        json={"organization_id": org_id},
        headers=core.header("alice"),
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "invariant_violation"

    memberships = client.get(
        "/api/memberships", params={"organization_id": org_id}, headers=core.header("alice")
    )
    assert len(memberships.json()) == 1


def test_other_tenants_are_invisible(client, core):
    org_id = _create_store(client, core)
    core.principal("bob")
    resp = client.get(f"/api/organizations/{org_id}", headers=core.header("bob"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"
    assert client.get("/api/organizations", headers=core.header("bob")).json() == []
