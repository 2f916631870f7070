"""
Tests for PromptExecutionEngine against mocked provider endpoints.
"""

import asyncio
import json
import threading

import httpx
import pytest

from conftest import BASE_TIME, fresh, make_profile
from llm_profiles.errors import (
    NoActiveProfileError,
    ProfileNotFoundError,
    ProfileValidationError,
    PromptTimeoutError,
)
from llm_profiles.llm.engine import DEFAULT_PROMPT, MAX_PROMPT_LENGTH, PromptExecutionEngine
from llm_profiles.vault.models import ProviderType


def json_response(payload, status_code=200):
    return httpx.Response(status_code, json=payload)


def completion(text, model="local-model"):
    return {"model": model, "choices": [{"message": {"role": "assistant", "content": text}}]}


class Endpoint:
    """MockTransport handler that records requests and replays a queue of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return fresh(response)

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def add_profile(vault_service, credential_service):
    def add(api_key="", **overrides):
        profile = make_profile(api_key=credential_service.encrypt(api_key).value, **overrides)
        vault_service.add_profile(profile)
        return profile

    return add


@pytest.fixture
def make_engine(vault_service, credential_service, recorder):
    def build(handler, **kwargs):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return PromptExecutionEngine(
            vault_service,
            credential_service,
            client=client,
            diagnostics_recorder=recorder,
            **kwargs,
        )

    return build


def azure_overrides(**overrides):
    values = dict(
        provider_type=ProviderType.AZURE,
        endpoint_url="https://contoso.openai.azure.com/",
        model_id="gpt-4o",
        consent_timestamp=BASE_TIME,
    )
    values.update(overrides)
    return values


@pytest.mark.asyncio
async def test_llama_success(add_profile, make_engine):
    profile = add_profile(is_active=True)
    endpoint = Endpoint(json_response({"choices": [{"text": "Hi there"}]}))
    engine = make_engine(endpoint)

    result = await engine.test_prompt(prompt_text="  Say hi  ")

    assert result.success
    assert result.profile_id == profile.id
    assert result.prompt_text == "Say hi"
    assert result.response_text == "Hi there"
    assert result.latency_ms >= 1
    assert result.total_time_ms >= result.latency_ms
    assert result.error_code is None

    request = endpoint.requests[0]
    assert str(request.url) == "http://localhost:8080/v1/chat/completions"
    assert "authorization" not in request.headers
    assert endpoint.last_body == {"messages": [{"role": "user", "content": "Say hi"}]}

    transcript = result.transcript
    assert transcript.status == "ok"
    assert [(m.role, m.text) for m in transcript.messages] == [("user", "Say hi"), ("assistant", "Hi there")]


@pytest.mark.asyncio
async def test_blank_prompt_uses_default(add_profile, make_engine):
    add_profile(is_active=True, model_id="qwen2")
    endpoint = Endpoint(json_response(completion("ok")))

    result = await make_engine(endpoint).test_prompt(prompt_text="   ")

    assert result.prompt_text == DEFAULT_PROMPT
    assert endpoint.last_body["model"] == "qwen2"
    assert endpoint.last_body["messages"][0]["content"] == DEFAULT_PROMPT


@pytest.mark.asyncio
async def test_long_response_is_truncated(add_profile, make_engine):
    add_profile(is_active=True)
    engine = make_engine(Endpoint(json_response(completion("x" * 800))))

    result = await engine.test_prompt()

    assert len(result.response_text) == 500
    assert result.response_text.endswith("...")
    assert result.transcript.messages[-1].truncated is True
    assert result.transcript.messages[0].truncated is False


@pytest.mark.asyncio
async def test_response_is_sanitized(add_profile, make_engine):
    add_profile(is_active=True)
    engine = make_engine(Endpoint(json_response(completion("\x1b[31mred\x1b[0m\x07 text\n"))))

    result = await engine.test_prompt()

    assert result.response_text == "red text"


@pytest.mark.asyncio
async def test_typed_content_parts_skip_echoed_input(add_profile, make_engine):
    add_profile(is_active=True)
    content = [
        {"type": "input_text", "text": "echoed prompt"},
        {"type": "output_text", "text": "Hello "},
        {"type": "text", "text": "world"},
    ]
    engine = make_engine(Endpoint(json_response({"choices": [{"message": {"content": content}}]})))

    result = await engine.test_prompt()

    assert result.response_text == "Hello world"


@pytest.mark.asyncio
async def test_transcript_keeps_three_latest_exchanges(add_profile, make_engine):
    profile = add_profile(is_active=True)
    engine = make_engine(Endpoint(json_response(completion("pong"))))

    for i in range(4):
        result = await engine.test_prompt(prompt_text=f"ping {i}")

    user_texts = [m.text for m in result.transcript.messages if m.role == "user"]
    assert user_texts == ["ping 1", "ping 2", "ping 3"]
    assert len(result.transcript.messages) == 6
    assert engine.transcripts.history_depth(profile.id) == 3


@pytest.mark.asyncio
async def test_azure_request_shape(add_profile, make_engine):
    profile = add_profile(api_key="azure-key", **azure_overrides(model_id="my deployment"))
    endpoint = Endpoint(json_response(completion("hi", model="gpt-4o-2024")))

    result = await make_engine(endpoint).test_prompt(profile_id=profile.id)

    request = endpoint.requests[0]
    assert request.url.raw_path.decode().split("?")[0] == "/openai/deployments/my%20deployment/chat/completions"
    assert request.url.params["api-version"] == "2024-02-15-preview"
    assert request.headers["api-key"] == "azure-key"
    assert "model" not in endpoint.last_body
    assert result.model_name == "gpt-4o-2024"


@pytest.mark.asyncio
async def test_azure_unauthorized_clears_transcript(add_profile, make_engine):
    profile = add_profile(api_key="azure-key", is_active=True, **azure_overrides())
    endpoint = Endpoint(
        json_response(completion("first")),
        json_response({"error": {"message": "Access denied"}}, status_code=401),
    )
    engine = make_engine(endpoint)
    await engine.test_prompt()

    result = await engine.test_prompt()

    assert not result.success
    assert result.error_code == "401"
    assert result.error_message == "Invalid API key. Check your credentials."
    assert result.response_text is None
    assert result.latency_ms is None
    assert result.transcript.status == "error"
    assert result.transcript.messages == []
    assert result.transcript.error_code == "401"
    assert engine.transcripts.history_depth(profile.id) == 0


@pytest.mark.asyncio
async def test_azure_deployment_not_found(add_profile, make_engine):
    add_profile(api_key="azure-key", is_active=True, **azure_overrides())
    body = {"error": {"code": "DeploymentNotFound", "message": "The API deployment does not exist"}}
    engine = make_engine(Endpoint(json_response(body, status_code=404)))

    result = await engine.test_prompt()

    assert result.error_code == "DeploymentNotFound"
    assert result.error_message == "Model deployment not found. Verify deployment name."


@pytest.mark.asyncio
async def test_custom_provider_bearer_auth(add_profile, make_engine):
    add_profile(
        api_key="sk-custom",
        is_active=True,
        provider_type=ProviderType.CUSTOM,
        endpoint_url="https://llm.example.com/v1",
        model_id="gpt-4o-mini",
        consent_timestamp=BASE_TIME,
    )
    endpoint = Endpoint(json_response(completion("hi")))

    await make_engine(endpoint).test_prompt()

    request = endpoint.requests[0]
    assert str(request.url) == "https://llm.example.com/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-custom"
    assert endpoint.last_body["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_custom_provider_error_message_from_body(add_profile, make_engine):
    add_profile(
        api_key="Bearer already-prefixed",
        is_active=True,
        provider_type=ProviderType.CUSTOM,
        endpoint_url="https://llm.example.com/v1",
        model_id="gpt-4o-mini",
        consent_timestamp=BASE_TIME,
    )
    endpoint = Endpoint(json_response({"error": {"message": "quota exhausted"}}, status_code=429))

    result = await make_engine(endpoint).test_prompt()

    assert endpoint.requests[0].headers["authorization"] == "Bearer already-prefixed"
    assert result.error_code == "429"
    assert result.error_message == "quota exhausted"


@pytest.mark.asyncio
async def test_connection_refused(add_profile, make_engine):
    add_profile(is_active=True, endpoint_url="http://localhost:8080/")
    engine = make_engine(Endpoint(httpx.ConnectError("All connection attempts failed")))

    result = await engine.test_prompt()

    assert not result.success
    assert result.error_code == "ECONNREFUSED"
    assert result.error_message == "Unable to connect to http://localhost:8080. Is the server running?"
    assert result.transcript.remediation == result.error_message


@pytest.mark.asyncio
async def test_transport_timeout_is_a_returned_failure(add_profile, make_engine):
    add_profile(is_active=True)
    engine = make_engine(Endpoint(httpx.ReadTimeout("read timed out")))

    result = await engine.test_prompt()

    assert result.error_code == "ETIMEDOUT"


@pytest.mark.asyncio
async def test_unparseable_success_is_invalid_response(add_profile, make_engine):
    add_profile(is_active=True)
    engine = make_engine(Endpoint(json_response({"choices": []})))

    result = await engine.test_prompt()

    assert not result.success
    assert result.error_code == "INVALID_RESPONSE"


@pytest.mark.asyncio
async def test_deadline_raises_without_side_effects(add_profile, make_engine, recorder):
    profile = add_profile(is_active=True)
    delay = 0

    async def handler(request):
        await asyncio.sleep(delay)
        return json_response(completion("pong"))

    engine = make_engine(handler)
    await engine.test_prompt(prompt_text="first")
    before = engine.transcripts.get(profile.id)
    recorded = len(recorder.events)

    delay = 1
    with pytest.raises(PromptTimeoutError) as exc_info:
        await engine.test_prompt(prompt_text="second", timeout_ms=50)

    assert exc_info.value.code == "TIMEOUT"
    assert exc_info.value.timeout_ms == 50
    assert len(recorder.events) == recorded
    after = engine.transcripts.get(profile.id)
    assert after == before
    assert [m.text for m in after.messages] == ["first", "pong"]
    assert after.status == "ok"


@pytest.mark.asyncio
async def test_unknown_profile(make_engine):
    engine = make_engine(Endpoint(json_response(completion("x"))))
    with pytest.raises(ProfileNotFoundError):
        await engine.test_prompt(profile_id="missing")


@pytest.mark.asyncio
async def test_no_active_profile(add_profile, make_engine):
    add_profile(is_active=False)
    engine = make_engine(Endpoint(json_response(completion("x"))))
    with pytest.raises(NoActiveProfileError) as exc_info:
        await engine.test_prompt()
    assert exc_info.value.code == "NO_ACTIVE_PROFILE"


@pytest.mark.asyncio
async def test_diagnostics_event_recorded(add_profile, make_engine, recorder):
    profile = add_profile(is_active=True)
    engine = make_engine(Endpoint(json_response(completion("hi"))))

    await engine.test_prompt()

    assert recorder.types() == ["llm_test_prompt"]
    result = recorder.events[0]["result"]
    assert result["profileId"] == profile.id
    assert result["providerType"] == "llama.cpp"
    assert result["success"] is True
    assert result["transcript"]["status"] == "ok"


@pytest.mark.asyncio
async def test_concurrent_calls_are_serialized(add_profile, make_engine):
    add_profile(is_active=True)
    in_flight = 0
    peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return json_response(completion("ok"))

    engine = make_engine(handler)

    results = await asyncio.gather(*(engine.test_prompt(prompt_text=f"p{i}") for i in range(3)))

    assert all(r.success for r in results)
    assert peak == 1
    assert len(results[-1].transcript.messages) == 6


class SlowServer:
    """Minimal HTTP/1.1 server on 127.0.0.1 that answers after ``delay`` seconds."""

    def __init__(self, delay: float, payload: dict):
        self.delay = delay
        self.payload = payload
        self.server = None

    async def __aenter__(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def __aexit__(self, *exc_info):
        self.server.close()
        await self.server.wait_closed()

    @property
    def url(self) -> str:
        host, port = self.server.sockets[0].getsockname()[:2]
        return f"http://{host}:{port}"

    async def _handle(self, reader, writer):
        head = await reader.readuntil(b"\r\n\r\n")
        length = 0
        for line in head.decode("latin-1").split("\r\n"):
            name, _, value = line.partition(":")
            if name.strip().lower() == "content-length":
                length = int(value.strip())
        if length:
            await reader.readexactly(length)

        await asyncio.sleep(self.delay)
        body = json.dumps(self.payload).encode()
        writer.write(
            b"HTTP/1.1 200 OK\r\nContent-Type: application/json\r\n"
            + f"Content-Length: {len(body)}\r\nConnection: close\r\n\r\n".encode()
            + body
        )
        try:
            await writer.drain()
        finally:
            writer.close()


@pytest.mark.asyncio
async def test_default_client_waits_for_configured_deadline(add_profile, vault_service, credential_service):
    # Slower than httpx's built-in 5 s default timeout
    async with SlowServer(5.5, completion("slow but fine")) as server:
        add_profile(is_active=True, endpoint_url=server.url)
        engine = PromptExecutionEngine(vault_service, credential_service)

        result = await engine.test_prompt(timeout_ms=10_000)

    assert result.success, result.error_message
    assert result.response_text == "slow but fine"
    assert result.latency_ms >= 5000


@pytest.mark.asyncio
async def test_default_client_deadline_raises(add_profile, vault_service, credential_service):
    async with SlowServer(2, completion("late")) as server:
        add_profile(is_active=True, endpoint_url=server.url)
        engine = PromptExecutionEngine(vault_service, credential_service)

        with pytest.raises(PromptTimeoutError):
            await engine.test_prompt(timeout_ms=200)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        completion(""),
        completion("   \n"),
        {"choices": [{"text": "  "}]},
        {"choices": [{"message": {"content": [{"type": "output_text", "text": " "}]}}]},
    ],
)
async def test_blank_assistant_text_is_invalid_response(add_profile, make_engine, body):
    add_profile(is_active=True)
    engine = make_engine(Endpoint(json_response(body)))

    result = await engine.test_prompt()

    assert not result.success
    assert result.error_code == "INVALID_RESPONSE"
    assert result.response_text is None


@pytest.mark.asyncio
async def test_overlong_prompt_is_rejected(add_profile, make_engine):
    add_profile(is_active=True)
    endpoint = Endpoint(json_response(completion("x")))
    engine = make_engine(endpoint)

    with pytest.raises(ProfileValidationError) as exc_info:
        await engine.test_prompt(prompt_text="p" * (MAX_PROMPT_LENGTH + 1))

    assert "promptText" in exc_info.value.details
    assert endpoint.requests == []

    result = await engine.test_prompt(prompt_text="p" * MAX_PROMPT_LENGTH)
    assert result.prompt_text == "p" * MAX_PROMPT_LENGTH


class ThreadRecordingRecorder:
    def __init__(self):
        self.threads = []

    def record(self, event: dict) -> None:
        self.threads.append(threading.get_ident())


class AsyncRecorder:
    def __init__(self):
        self.events = []

    async def record(self, event: dict) -> None:
        self.events.append(event)


@pytest.mark.asyncio
async def test_sync_recorder_runs_off_the_event_loop(add_profile, vault_service, credential_service):
    add_profile(is_active=True)
    recorder = ThreadRecordingRecorder()
    engine = PromptExecutionEngine(
        vault_service,
        credential_service,
        client=httpx.AsyncClient(transport=httpx.MockTransport(Endpoint(json_response(completion("hi"))))),
        diagnostics_recorder=recorder,
    )

    await engine.test_prompt()

    assert len(recorder.threads) == 1
    assert recorder.threads[0] != threading.get_ident()


@pytest.mark.asyncio
async def test_async_recorder_is_awaited(add_profile, vault_service, credential_service):
    add_profile(is_active=True)
    recorder = AsyncRecorder()
    engine = PromptExecutionEngine(
        vault_service,
        credential_service,
        client=httpx.AsyncClient(transport=httpx.MockTransport(Endpoint(json_response(completion("hi"))))),
        diagnostics_recorder=recorder,
    )

    await engine.test_prompt()

    assert recorder.events[0]["type"] == "llm_test_prompt"
