"""
HTTP API tests against a scripted provider.

Provisioning runs as a background task after the 202 response, so tests
poll GET /v1/sessions/{id} until the session settles.
"""
from __future__ import annotations

import time
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from sandctl import __version__
from sandctl.config import Settings
from sandctl.models import LegacySession, SessionStatus
from sandctl.providers import registry
from sandctl.server import create_app
from sandctl.server.auth import verify_api_key
from tests.providers.fake_provider import FakeProvider, provider_error


@pytest.fixture
def fake() -> FakeProvider:
    return FakeProvider(address="10.0.0.9")


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, fake: FakeProvider) -> Settings:
    monkeypatch.setitem(registry.PROVIDERS, "fake", lambda settings: fake)
    monkeypatch.setenv("SANDCTL_DEFAULT_PROVIDER", "fake")
    monkeypatch.setenv("SANDCTL_WAIT_FOR_BOOT", "0")
    return Settings()


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def _wait_for_status(client: TestClient, session_id: str, status: str) -> dict:
    deadline = time.monotonic() + 5
    while True:
        body = client.get(f"/v1/sessions/{session_id}").json()
        if body.get("status") == status or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["version"] == __version__
    assert "fake" in body["providers"]
    assert "hetzner" in body["providers"]


def test_create_session_provisions_in_background(client: TestClient, fake: FakeProvider) -> None:
    response = client.post("/v1/sessions", json={"timeout": "2h"})
    assert response.status_code == 202
    created = response.json()
    assert created["status"] == "provisioning"
    assert created["provider"] == "fake"
    assert created["timeout"] == "2h0m0s"

    body = _wait_for_status(client, created["id"], "running")
    assert body["status"] == "running"
    assert body["ip_address"] == "10.0.0.9"
    assert body["provider_id"] in fake.vms
    assert fake.count("create") == 1


@pytest.mark.parametrize("timeout", ["soon", "-5m", "0s"])
def test_create_session_rejects_bad_timeout(
    client: TestClient, fake: FakeProvider, timeout: str
) -> None:
    response = client.post("/v1/sessions", json={"timeout": timeout})
    assert response.status_code == 422
    assert fake.count("create") == 0


def test_create_session_rejects_unknown_provider(client: TestClient) -> None:
    response = client.post("/v1/sessions", json={"provider": "nope"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "bad_request"


def test_failed_provisioning_is_reported_on_the_session(settings: Settings, fake: FakeProvider) -> None:
    fake.wait_error = provider_error("never came up")
    with TestClient(create_app(settings)) as client:
        created = client.post("/v1/sessions", json={}).json()
        body = _wait_for_status(client, created["id"], "failed")

        assert body["status"] == "failed"
        # The half-created VM was rolled back.
        assert fake.count("delete") == 1
        assert fake.vms == {}

        active = client.get("/v1/sessions").json()["sessions"]
        assert [s["id"] for s in active] == []
        everything = client.get("/v1/sessions", params={"all": "true"}).json()["sessions"]
        assert [s["id"] for s in everything] == [created["id"]]


def test_get_missing_session(client: TestClient) -> None:
    response = client.get("/v1/sessions/ghost", headers={"X-Request-ID": "req-test"})
    assert response.status_code == 404
    assert response.headers["X-Request-ID"] == "req-test"
    error = response.json()["error"]
    assert error["kind"] == "not_found"
    assert error["request_id"] == "req-test"
    assert error["details"] == {"id": "ghost"}


def test_request_id_is_generated(client: TestClient) -> None:
    response = client.get("/health")
    assert response.headers["X-Request-ID"].startswith("req-")


def test_get_session_is_case_insensitive(client: TestClient) -> None:
    created = client.post("/v1/sessions", json={}).json()
    _wait_for_status(client, created["id"], "running")
    response = client.get(f"/v1/sessions/{created['id'].upper()}")
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]


def test_destroy_session(client: TestClient, fake: FakeProvider) -> None:
    created = client.post("/v1/sessions", json={}).json()
    _wait_for_status(client, created["id"], "running")

    response = client.delete(f"/v1/sessions/{created['id']}")
    assert response.status_code == 200
    assert response.json() == {
        "id": created["id"],
        "remote_deleted": True,
        "local_removed": True,
    }
    assert fake.vms == {}
    assert client.get(f"/v1/sessions/{created['id']}").status_code == 404


def test_destroy_keeps_record_when_remote_delete_fails(client: TestClient, fake: FakeProvider) -> None:
    created = client.post("/v1/sessions", json={}).json()
    _wait_for_status(client, created["id"], "running")
    fake.delete_errors.append(provider_error("api down"))

    response = client.delete(f"/v1/sessions/{created['id']}")
    assert response.status_code == 502
    assert response.json()["error"]["kind"] == "remote_delete"
    assert client.get(f"/v1/sessions/{created['id']}").status_code == 200


def test_destroy_legacy_session_removes_locally(client: TestClient, fake: FakeProvider) -> None:
    client.app.state.services.store.add(
        LegacySession(id="oldie", status=SessionStatus.RUNNING)
    )
    listed = client.get("/v1/sessions").json()["sessions"]
    assert listed[0]["legacy"] is True
    assert listed[0]["provider"] is None

    response = client.delete("/v1/sessions/oldie")
    assert response.status_code == 200
    assert response.json()["remote_deleted"] is False
    assert fake.count("delete") == 0


def test_destroy_missing_session(client: TestClient) -> None:
    response = client.delete("/v1/sessions/ghost")
    assert response.status_code == 404


def test_shutdown_closes_providers(settings: Settings, fake: FakeProvider) -> None:
    with TestClient(create_app(settings)) as client:
        created = client.post("/v1/sessions", json={}).json()
        _wait_for_status(client, created["id"], "running")
        assert not fake.closed
    assert fake.closed


class TestAuthentication:
    @pytest.fixture
    def client(self, settings: Settings) -> Iterator[TestClient]:
        settings.api_key = "secret"
        with TestClient(create_app(settings)) as test_client:
            yield test_client

    def test_missing_key(self, client: TestClient) -> None:
        response = client.get("/v1/sessions")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "authentication_error"

    def test_wrong_key(self, client: TestClient) -> None:
        response = client.get("/v1/sessions", headers={"X-API-Key": "guess"})
        assert response.status_code == 401

    def test_valid_key(self, client: TestClient) -> None:
        response = client.get("/v1/sessions", headers={"X-API-Key": "secret"})
        assert response.status_code == 200
        assert response.json() == {"sessions": []}

    def test_health_is_public(self, client: TestClient) -> None:
        assert client.get("/health").status_code == 200


def test_verify_api_key(settings: Settings) -> None:
    assert verify_api_key("anything", settings)
    settings.api_key = "secret"
    assert verify_api_key("secret", settings)
    assert not verify_api_key("secret2", settings)
