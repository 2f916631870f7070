"""
Shared fixtures: in-memory vaults, credential services and a recording
diagnostics sink.
"""

import itertools
import uuid

import httpx
import pytest

from llm_profiles.profiles.service import ProfileService
from llm_profiles.security.credentials import CredentialService, FernetCredentialAdapter
from llm_profiles.vault.models import ProviderProfile, ProviderType
from llm_profiles.vault.service import VaultService
from llm_profiles.vault.store import InMemoryVaultStore

BASE_TIME = 1_700_000_000_000


class RecordingRecorder:
    """Diagnostics recorder that keeps every event in memory."""

    def __init__(self):
        self.events = []

    def record(self, event: dict) -> None:
        self.events.append(event)

    def types(self) -> list:
        return [event["type"] for event in self.events]


class FailingRecorder:
    def record(self, event: dict) -> None:
        raise RuntimeError("recorder offline")


def make_profile(**overrides) -> ProviderProfile:
    """A valid llama.cpp profile; override any attribute."""
    values = dict(
        id=str(uuid.uuid4()),
        name="Local llama",
        provider_type=ProviderType.LLAMA_CPP,
        endpoint_url="http://localhost:8080",
        api_key="",
        model_id=None,
        is_active=False,
        consent_timestamp=None,
        created_at=BASE_TIME,
        modified_at=BASE_TIME,
    )
    values.update(overrides)
    return ProviderProfile(**values)


def fresh(response: httpx.Response) -> httpx.Response:
    """Copy of a canned response; a Response can only be sent once."""
    return httpx.Response(response.status_code, headers=response.headers, content=response.content)


def azure_payload(**overrides) -> dict:
    payload = {
        "name": "Azure GPT-4o",
        "providerType": "azure",
        "endpointUrl": "https://contoso.openai.azure.com",
        "apiKey": "azure-secret-key",
        "modelId": "gpt-4o",
        "consentTimestamp": BASE_TIME,
    }
    payload.update(overrides)
    return payload


def llama_payload(**overrides) -> dict:
    payload = {
        "name": "Local llama",
        "providerType": "llama.cpp",
        "endpointUrl": "http://localhost:8080",
        "apiKey": "",
        "modelId": None,
        "consentTimestamp": None,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def clock():
    """Millisecond clock that advances by one second per call."""
    counter = itertools.count(BASE_TIME + 1000, 1000)
    return lambda: next(counter)


@pytest.fixture
def fernet_key():
    return FernetCredentialAdapter.generate_key()


@pytest.fixture
def credential_service(fernet_key):
    return CredentialService(adapter=FernetCredentialAdapter(fernet_key))


@pytest.fixture
def plaintext_credentials():
    return CredentialService(adapter=FernetCredentialAdapter(None))


@pytest.fixture
def store():
    return InMemoryVaultStore()


@pytest.fixture
def vault_service(store):
    return VaultService(store)


@pytest.fixture
def recorder():
    return RecordingRecorder()


@pytest.fixture
def profile_service(vault_service, credential_service, recorder, clock):
    return ProfileService(vault_service, credential_service, diagnostics_recorder=recorder, now=clock)
