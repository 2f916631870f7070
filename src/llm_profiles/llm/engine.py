"""
Prompt Execution Engine

Fires a single test prompt at a provider profile and reports what happened.

Two failure channels:
- Raised: unknown profile, no active profile, deadline expiry
- Returned: any HTTP status or network failure (``success=False``)

Calls on one engine are serialized so transcript updates never interleave.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from ..errors import NoActiveProfileError, ProfileNotFoundError, ProfileValidationError, PromptTimeoutError
from ..security.credentials import CredentialService
from ..vault.models import ProviderProfile, ProviderType
from ..vault.service import VaultService
from .base_provider import BaseLLMProvider, InvalidProviderResponse, ProviderFailure, ProviderRequest
from .router import create_provider
from .text import clean_error_message, sanitize, truncate
from .transcript import Transcript, TranscriptMessage, TranscriptStore

logger = logging.getLogger("llm-profiles")

DEFAULT_PROMPT = "Hello, can you respond?"
DEFAULT_TIMEOUT_MS = 10_000
MAX_PROMPT_LENGTH = 4000


@dataclass
class TestPromptResult:
    """Outcome of one test prompt (never persisted)."""
    success: bool
    profile_id: str
    profile_name: str
    provider_type: ProviderType
    prompt_text: str
    response_text: Optional[str]
    model_name: Optional[str]
    latency_ms: Optional[int]
    total_time_ms: int
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
    transcript: Transcript = field(default_factory=Transcript)

    # Not collected by pytest despite the name
    __test__ = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "profileId": self.profile_id,
            "profileName": self.profile_name,
            "providerType": self.provider_type.value,
            "promptText": self.prompt_text,
            "responseText": self.response_text,
            "modelName": self.model_name,
            "latencyMs": self.latency_ms,
            "totalTimeMs": self.total_time_ms,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp,
            "transcript": self.transcript.to_dict(),
        }


@dataclass
class _Completed:
    """A provider call that returned, successfully or not."""
    latency_ms: Optional[int]
    text: Optional[str] = None
    model_name: Optional[str] = None
    failure: Optional[ProviderFailure] = None


class PromptExecutionEngine:
    """
    Provider-agnostic test prompt runner.

    The HTTP transport is an ``httpx.AsyncClient``; inject one built on
    ``httpx.MockTransport`` to test without a server. Without an injected
    client a short-lived client is opened per call.
    """

    def __init__(
        self,
        vault_service: VaultService,
        credential_service: CredentialService,
        client: Optional[httpx.AsyncClient] = None,
        diagnostics_recorder: Optional[Any] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        transcripts: Optional[TranscriptStore] = None,
    ):
        """
        Initialize the engine.

        Args:
            vault_service: Source of the profile to test
            credential_service: Decrypts the stored API key
            client: HTTP client used for provider calls
            diagnostics_recorder: Optional ``record(event)`` sink
            timeout_ms: Default deadline per call
            transcripts: Transcript store (one per engine by default)
        """
        self.vault_service = vault_service
        self.credential_service = credential_service
        self.client = client
        self.diagnostics_recorder = diagnostics_recorder
        self.timeout_ms = timeout_ms
        self.transcripts = transcripts or TranscriptStore()
        self._lock = asyncio.Lock()

    async def test_prompt(
        self,
        profile_id: Optional[str] = None,
        prompt_text: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> TestPromptResult:
        """
        Send one prompt to a profile's provider.

        Args:
            profile_id: Profile to test (defaults to the active profile)
            prompt_text: Prompt to send (defaults to a short greeting)
            timeout_ms: Deadline override for this call

        Returns:
            TestPromptResult, ``success=False`` for provider failures

        Raises:
            ProfileNotFoundError: If ``profile_id`` is unknown
            NoActiveProfileError: If no id was given and nothing is active
            ProfileValidationError: If the prompt is longer than 4000 characters
            PromptTimeoutError: If the deadline expires first
        """
        async with self._lock:
            return await self._run(profile_id, prompt_text, timeout_ms)

    async def _run(
        self,
        profile_id: Optional[str],
        prompt_text: Optional[str],
        timeout_ms: Optional[int],
    ) -> TestPromptResult:
        prompt = normalize_prompt(prompt_text)
        profile = self._resolve_profile(profile_id)
        api_key = self.credential_service.decrypt(profile.api_key).value
        provider = create_provider(profile, api_key)

        request = provider.build_request(prompt)
        deadline_ms = timeout_ms if timeout_ms and timeout_ms > 0 else self.timeout_ms

        logger.info(f"[PROMPT] Testing profile {profile.id} ({profile.provider_type.value})")
        started = time.perf_counter()
        try:
            completed = await asyncio.wait_for(
                self._execute(provider, request, started),
                timeout=deadline_ms / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[PROMPT] Test prompt for {profile.id} timed out after {deadline_ms}ms")
            raise PromptTimeoutError(deadline_ms) from None

        if completed.failure is not None:
            result = self._failure_result(profile, prompt, completed.failure, started)
        else:
            result = self._success_result(profile, prompt, completed, started)

        await self._record(result)
        return result

    def _resolve_profile(self, profile_id: Optional[str]) -> ProviderProfile:
        vault = self.vault_service.load_vault()
        if profile_id:
            profile = vault.find(profile_id)
            if profile is None:
                raise ProfileNotFoundError(profile_id)
            return profile
        if vault.active_profile is None:
            raise NoActiveProfileError()
        return vault.active_profile

    async def _execute(self, provider: BaseLLMProvider, request: ProviderRequest, started: float) -> _Completed:
        """Perform the HTTP call and classify its outcome."""
        try:
            if self.client is not None:
                response = await self._send(self.client, request)
            else:
                # No transport timeout: asyncio.wait_for owns the deadline
                async with httpx.AsyncClient(follow_redirects=False, timeout=None) as client:
                    response = await self._send(client, request)
        except httpx.HTTPError as e:
            logger.warning(f"[PROMPT] Network error calling {provider.endpoint}: {type(e).__name__}")
            return _Completed(latency_ms=None, failure=provider.map_network_error(e))

        latency_ms = elapsed_ms(started)
        body = _json_or_none(response)

        if response.status_code >= 400:
            logger.warning(f"[PROMPT] Provider returned status {response.status_code}")
            return _Completed(latency_ms=None, failure=provider.map_http_error(response.status_code, body))

        try:
            text, model_name = provider.parse_response(body)
        except InvalidProviderResponse as e:
            return _Completed(latency_ms=None, failure=ProviderFailure("INVALID_RESPONSE", str(e)))
        return _Completed(latency_ms=latency_ms, text=text, model_name=model_name)

    async def _send(self, client: httpx.AsyncClient, request: ProviderRequest) -> httpx.Response:
        response = await client.request(
            request.method,
            request.url,
            json=request.body,
            headers=request.headers,
        )
        await response.aread()
        return response

    def _success_result(
        self,
        profile: ProviderProfile,
        prompt: str,
        completed: _Completed,
        started: float,
    ) -> TestPromptResult:
        response_text, response_truncated = truncate(sanitize(completed.text or ""))
        user_text, user_truncated = truncate(sanitize(prompt))
        total_time_ms = elapsed_ms(started)

        transcript = self.transcripts.record_success(
            profile.id,
            TranscriptMessage("user", user_text, user_truncated),
            TranscriptMessage("assistant", response_text, response_truncated),
            latency_ms=completed.latency_ms,
            total_time_ms=total_time_ms,
        )
        logger.info(f"[PROMPT] Profile {profile.id} responded in {completed.latency_ms}ms")

        return TestPromptResult(
            success=True,
            profile_id=profile.id,
            profile_name=profile.name,
            provider_type=profile.provider_type,
            prompt_text=prompt,
            response_text=response_text,
            model_name=completed.model_name,
            latency_ms=completed.latency_ms,
            total_time_ms=total_time_ms,
            transcript=transcript,
        )

    def _failure_result(
        self,
        profile: ProviderProfile,
        prompt: str,
        failure: ProviderFailure,
        started: float,
    ) -> TestPromptResult:
        message = clean_error_message(failure.message)
        total_time_ms = elapsed_ms(started)
        transcript = self.transcripts.record_error(profile.id, failure.code, message, total_time_ms)

        return TestPromptResult(
            success=False,
            profile_id=profile.id,
            profile_name=profile.name,
            provider_type=profile.provider_type,
            prompt_text=prompt,
            response_text=None,
            model_name=None,
            latency_ms=None,
            total_time_ms=total_time_ms,
            error_code=failure.code,
            error_message=message,
            transcript=transcript,
        )

    async def _record(self, result: TestPromptResult) -> None:
        if not self.diagnostics_recorder:
            return
        event = {"type": "llm_test_prompt", "result": result.to_dict()}
        record = self.diagnostics_recorder.record
        try:
            if inspect.iscoroutinefunction(record):
                await record(event)
                return
            # Synchronous recorders (file writes) run off the event loop
            outcome = await asyncio.to_thread(record, event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"[PROMPT] Failed to record test prompt diagnostics event: {e}")


def normalize_prompt(prompt_text: Optional[str]) -> str:
    """
    Trimmed prompt, or the default prompt when blank.

    Raises:
        ProfileValidationError: If the prompt exceeds MAX_PROMPT_LENGTH
    """
    if not prompt_text or not prompt_text.strip():
        return DEFAULT_PROMPT
    prompt = prompt_text.strip()
    if len(prompt) > MAX_PROMPT_LENGTH:
        message = f"promptText must be at most {MAX_PROMPT_LENGTH} characters"
        raise ProfileValidationError(f"Invalid test prompt: {message}", details={"promptText": [message]})
    return prompt


def elapsed_ms(started: float) -> int:
    return max(1, round((time.perf_counter() - started) * 1000))


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
