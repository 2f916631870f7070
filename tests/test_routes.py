"""
Tests for the Flask profile API.
"""

import asyncio
import copy

import httpx
import pytest

from conftest import azure_payload, fresh, llama_payload
from llm_profiles.config import DEFAULTS
from llm_profiles.security.credentials import ENCRYPTION_KEY_ENV
from llm_profiles.vault.models import API_KEY_PLACEHOLDER
from llm_profiles.vault.store import InMemoryVaultStore
from llm_profiles.web import create_app

MISSING_ID = "0b6f7d3b-6b1a-4e7a-9d1b-8f14e45fceea"


class ProviderStub:
    """Async MockTransport handler with a swappable reply."""

    def __init__(self):
        self.delay = 0
        self.response = httpx.Response(200, json={"choices": [{"message": {"content": "pong"}}]})

    async def __call__(self, request):
        if self.delay:
            await asyncio.sleep(self.delay)
        return fresh(self.response)


class HealthStub:
    """Local health endpoint that is up on the ports listed in ``healthy``."""

    def __init__(self):
        self.healthy = set()
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        if request.url.port in self.healthy:
            return httpx.Response(200, json={"status": "ok"})
        raise httpx.ConnectError("connection refused", request=request)


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def health():
    return HealthStub()


@pytest.fixture
def client(monkeypatch, fernet_key, provider, health):
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)
    config = copy.deepcopy(DEFAULTS)
    config["audit"]["enabled"] = False
    config["credentials"]["encryption_key"] = fernet_key

    app = create_app(
        config,
        store=InMemoryVaultStore(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
        discovery_client=httpx.AsyncClient(transport=httpx.MockTransport(health)),
    )
    app.config["TESTING"] = True
    return app.test_client()


def create(client, payload):
    response = client.post("/api/llm/profiles", json={"profile": payload})
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]["profile"]


def test_list_empty(client):
    response = client.get("/api/llm/profiles")

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["data"] == {"profiles": [], "encryptionAvailable": True, "activeProfileId": None}
    assert isinstance(body["timestamp"], int)


def test_create_redacts_key(client):
    profile = create(client, azure_payload())

    assert profile["apiKey"] == API_KEY_PLACEHOLDER
    assert profile["isActive"] is True

    listed = client.get("/api/llm/profiles").get_json()["data"]
    assert listed["activeProfileId"] == profile["id"]
    assert listed["encryptionAvailable"] is True


def test_create_validation_error(client):
    response = client.post("/api/llm/profiles", json={"profile": azure_payload(consentTimestamp=None)})

    assert response.status_code == 400
    body = response.get_json()
    assert body["success"] is False
    assert body["error"] == "VALIDATION_ERROR"
    assert "consentTimestamp" in body["details"]


def test_create_without_body(client):
    response = client.post("/api/llm/profiles", data="not json", content_type="text/plain")
    assert response.status_code == 400


def test_update_profile(client):
    profile = create(client, llama_payload())

    response = client.patch(f"/api/llm/profiles/{profile['id']}", json={"changes": {"name": "Renamed"}})

    assert response.status_code == 200
    assert response.get_json()["data"]["profile"]["name"] == "Renamed"


def test_update_unknown_profile(client):
    response = client.patch(f"/api/llm/profiles/{MISSING_ID}", json={"changes": {"name": "x"}})
    assert response.status_code == 404
    assert response.get_json()["error"] == "PROFILE_NOT_FOUND"


def test_delete_with_successor(client):
    first = create(client, llama_payload(name="A"))
    second = create(client, llama_payload(name="B"))

    response = client.delete(
        f"/api/llm/profiles/{first['id']}",
        json={"successorProfileId": second["id"]},
    )

    assert response.status_code == 200
    assert response.get_json()["data"] == {
        "deletedId": first["id"],
        "newActiveProfileId": second["id"],
        "requiresUserSelection": False,
    }


def test_delete_with_unknown_successor(client):
    first = create(client, llama_payload())
    response = client.delete(f"/api/llm/profiles/{first['id']}", json={"successorProfileId": MISSING_ID})
    assert response.status_code == 404
    assert response.get_json()["error"] == "ALTERNATE_NOT_FOUND"


def test_activate_profile(client):
    create(client, llama_payload(name="A"))
    second = create(client, llama_payload(name="B"))

    response = client.post(f"/api/llm/profiles/{second['id']}/activate")

    assert response.status_code == 200
    assert response.get_json()["data"]["activeProfile"]["id"] == second["id"]


def test_prompt_success(client):
    profile = create(client, llama_payload())

    response = client.post(f"/api/llm/profiles/{profile['id']}/test", json={"promptOverride": "ping"})

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["success"] is True
    assert data["responseText"] == "pong"
    assert data["promptText"] == "ping"
    assert data["transcript"]["status"] == "ok"


def test_prompt_provider_failure_is_still_200(client, provider):
    profile = create(client, llama_payload())
    provider.response = httpx.Response(500, json={"error": {"code": "server_error"}})

    response = client.post(f"/api/llm/profiles/{profile['id']}/test")

    assert response.status_code == 200
    body = response.get_json()
    assert body["message"] == "Test prompt failed"
    assert body["data"]["errorCode"] == "server_error"


def test_prompt_timeout(client, provider):
    profile = create(client, llama_payload())
    provider.delay = 1

    response = client.post(f"/api/llm/profiles/{profile['id']}/test", json={"timeoutMs": 50})

    assert response.status_code == 504
    assert response.get_json()["error"] == "TIMEOUT"


def test_prompt_rejects_bad_timeout(client):
    profile = create(client, llama_payload())
    response = client.post(f"/api/llm/profiles/{profile['id']}/test", json={"timeoutMs": "soon"})
    assert response.status_code == 400
    assert "timeoutMs" in response.get_json()["details"]


def test_prompt_unknown_profile(client):
    response = client.post(f"/api/llm/profiles/{MISSING_ID}/test")
    assert response.status_code == 404


def test_status(client):
    response = client.get("/api/llm/status")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["encryptionAvailable"] is True
    assert data["lastFallbackEvent"] is None
    assert data["auditEnabled"] is False


def test_prompt_override_too_long(client):
    profile = create(client, llama_payload())

    response = client.post(f"/api/llm/profiles/{profile['id']}/test", json={"promptOverride": "x" * 4001})

    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "VALIDATION_ERROR"
    assert "promptOverride" in body["details"]


def test_discover_creates_local_profile(client, health):
    health.healthy.add(8000)

    response = client.post("/api/llm/profiles/discover", json={"scope": {"strategy": "local"}})

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["discovered"] is True
    assert data["discoveredUrl"] == "http://localhost:8000"
    assert data["profileCreated"] is True
    assert data["probedPorts"] == [8080, 8000, 11434]

    listed = client.get("/api/llm/profiles").get_json()["data"]
    assert [p["name"] for p in listed["profiles"]] == ["Local llama.cpp"]
    assert listed["activeProfileId"] == data["profileId"]


def test_discover_nothing_running(client, health):
    response = client.post("/api/llm/profiles/discover", json={"force": True})

    assert response.status_code == 200
    body = response.get_json()
    assert body["data"]["discovered"] is False
    assert body["message"] == "No local LLM server found"
    assert health.calls == 3


def test_discover_rejects_bad_scope(client):
    response = client.post(
        "/api/llm/profiles/discover",
        json={"scope": {"strategy": "everywhere", "timeoutMs": -1}},
    )

    assert response.status_code == 400
    details = response.get_json()["details"]
    assert "scope.strategy" in details
    assert "scope.timeoutMs" in details


def test_audit_verify_when_disabled(client):
    response = client.get("/api/llm/audit/verify")

    assert response.status_code == 200
    assert response.get_json()["data"] == {"auditEnabled": False, "valid": None}


def test_audit_verify_after_changes(monkeypatch, fernet_key, provider, tmp_path):
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)
    config = copy.deepcopy(DEFAULTS)
    config["audit"]["directory"] = str(tmp_path / "audit")
    config["credentials"]["encryption_key"] = fernet_key
    app = create_app(
        config,
        store=InMemoryVaultStore(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
    )
    audited = app.test_client()

    profile = create(audited, llama_payload())
    audited.post(f"/api/llm/profiles/{profile['id']}/test")

    response = audited.get("/api/llm/audit/verify")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["auditEnabled"] is True
    assert data["valid"] is True
    assert data["eventsChecked"] >= 2
    assert data["signatureFailures"] == []
