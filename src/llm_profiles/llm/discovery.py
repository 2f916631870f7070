"""
Local Server Discovery

Looks for a llama.cpp (or Ollama) server on the well-known local ports and
makes sure a profile exists for the first one that answers its health
check.

- Ports are checked concurrently; the first healthy port in configured
  order wins
- Results are cached; ``force=True`` bypasses the cache
- Every run is reported to an optional diagnostics recorder as an
  ``llm_autodiscovery`` event
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from ..profiles.service import ProfileService
from ..provider_types import ProviderType

logger = logging.getLogger("llm-profiles")

DEFAULT_PORTS = [8080, 8000, 11434]
DEFAULT_HOSTNAME = "localhost"
DEFAULT_TIMEOUT_MS = 2_000
DEFAULT_CACHE_DURATION_MS = 5 * 60 * 1000
DEFAULT_PROFILE_NAME = "Local llama.cpp"
HEALTH_CHECK_PATH = "/health"

STRATEGIES = ("local", "remote")


@dataclass
class DiscoveryResult:
    discovered: bool
    discovered_url: Optional[str]
    profile_created: bool
    profile_id: Optional[str]
    ports_checked: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "discovered": self.discovered,
            "discoveredUrl": self.discovered_url,
            "profileCreated": self.profile_created,
            "profileId": self.profile_id,
            "probedPorts": list(self.ports_checked),
        }

    def copy(self) -> "DiscoveryResult":
        return DiscoveryResult(
            self.discovered,
            self.discovered_url,
            self.profile_created,
            self.profile_id,
            list(self.ports_checked),
        )


class AutoDiscoveryService:
    """Health-check local ports and register the server that answers."""

    def __init__(
        self,
        profile_service: ProfileService,
        diagnostics_recorder: Any = None,
        client: Optional[httpx.AsyncClient] = None,
        ports: Optional[list[int]] = None,
        hostname: Optional[str] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        cache_duration_ms: int = DEFAULT_CACHE_DURATION_MS,
        health_path: str = HEALTH_CHECK_PATH,
        now: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize the discovery service.

        Args:
            profile_service: Used to list profiles and create the local one
            diagnostics_recorder: Optional sink for ``llm_autodiscovery`` events
            client: Shared HTTP client (a short-lived one is used when omitted)
            ports: Ports to check, in order of preference
            hostname: Host the local server listens on
            timeout_ms: Per-port health check timeout
            cache_duration_ms: How long a result is reused
            health_path: Path of the health endpoint
            now: Millisecond clock
        """
        self.profile_service = profile_service
        self.diagnostics_recorder = diagnostics_recorder
        self.client = client
        self.ports = list(ports) if ports else list(DEFAULT_PORTS)
        self.hostname = (hostname or "").strip() or DEFAULT_HOSTNAME
        self.timeout_ms = timeout_ms
        self.cache_duration_ms = cache_duration_ms
        self.health_path = health_path if health_path.startswith("/") else f"/{health_path}"
        self._now = now or (lambda: int(time.time() * 1000))
        self._cached: Optional[tuple[DiscoveryResult, int]] = None

    @classmethod
    def from_config(cls, profile_service: ProfileService, config: Optional[dict] = None, **kwargs) -> "AutoDiscoveryService":
        config = config or {}
        return cls(
            profile_service,
            ports=[int(p) for p in config.get("ports") or DEFAULT_PORTS],
            hostname=config.get("hostname"),
            timeout_ms=int(config.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
            cache_duration_ms=int(config.get("cache_duration_ms", DEFAULT_CACHE_DURATION_MS)),
            health_path=config.get("health_path") or HEALTH_CHECK_PATH,
            **kwargs,
        )

    async def discover(
        self,
        force: bool = False,
        strategy: str = "local",
        timeout_ms: Optional[int] = None,
    ) -> DiscoveryResult:
        """
        Find a local server and make sure a llama.cpp profile points at it.

        Args:
            force: Ignore a cached result
            strategy: ``local`` or ``remote`` (remote falls back to local)
            timeout_ms: Per-port timeout override for this run

        Returns:
            DiscoveryResult (a copy; cached results are never shared)

        Raises:
            Whatever ProfileService.create_profile raises when the
            discovered server cannot be registered
        """
        if not force:
            cached = self._cached_result()
            if cached is not None:
                return cached

        if strategy == "remote":
            logger.warning("[DISCOVERY] Remote discovery is not supported; checking local ports")

        started = self._now()
        effective_timeout = timeout_ms if timeout_ms and timeout_ms > 0 else self.timeout_ms
        endpoint_url = await self._first_healthy(effective_timeout)

        if endpoint_url is None:
            result = DiscoveryResult(False, None, False, None, list(self.ports))
            logger.info(f"[DISCOVERY] No local server on ports {self.ports}")
            self._store(result)
            await self._record(result, force, started)
            return result.copy()

        try:
            profile_id, created = self._ensure_profile(endpoint_url)
        except Exception as e:
            failed = DiscoveryResult(True, endpoint_url, False, None, list(self.ports))
            await self._record(failed, force, started, error=e)
            raise

        result = DiscoveryResult(True, endpoint_url, created, profile_id, list(self.ports))
        logger.info(
            f"[DISCOVERY] Found local server at {endpoint_url}"
            f"{' (profile created)' if created else ''}"
        )
        self._store(result)
        await self._record(result, force, started)
        return result.copy()

    def _cached_result(self) -> Optional[DiscoveryResult]:
        if self._cached is None:
            return None
        result, stored_at = self._cached
        if self._now() - stored_at > self.cache_duration_ms:
            return None
        return result.copy()

    def _store(self, result: DiscoveryResult) -> None:
        self._cached = (result.copy(), self._now())

    async def _first_healthy(self, timeout_ms: int) -> Optional[str]:
        timeout = httpx.Timeout(timeout_ms / 1000)
        if self.client is not None:
            healthy = await asyncio.gather(*(self._check_port(self.client, p, timeout) for p in self.ports))
        else:
            async with httpx.AsyncClient(follow_redirects=False) as client:
                healthy = await asyncio.gather(*(self._check_port(client, p, timeout) for p in self.ports))

        for port, ok in zip(self.ports, healthy):
            if ok:
                return self._endpoint_for(port)
        return None

    async def _check_port(self, client: httpx.AsyncClient, port: int, timeout: httpx.Timeout) -> bool:
        url = f"{self._endpoint_for(port)}{self.health_path}"
        try:
            response = await client.get(url, timeout=timeout)
        except httpx.HTTPError as e:
            logger.debug(f"[DISCOVERY] {url} unreachable: {e}")
            return False
        return response.is_success

    def _endpoint_for(self, port: int) -> str:
        return f"http://{self.hostname}:{port}"

    def _ensure_profile(self, endpoint_url: str) -> tuple[str, bool]:
        """Reuse a llama.cpp profile on the same endpoint, or create one."""
        target = normalize_endpoint(endpoint_url)
        for profile in self.profile_service.list_profiles()["profiles"]:
            if profile.provider_type == ProviderType.LLAMA_CPP and normalize_endpoint(profile.endpoint_url) == target:
                return profile.id, False

        created = self.profile_service.create_profile({
            "name": DEFAULT_PROFILE_NAME,
            "providerType": ProviderType.LLAMA_CPP.value,
            "endpointUrl": target,
            "apiKey": "",
            "modelId": None,
            "consentTimestamp": None,
        })
        return created["profile"].id, True

    async def _record(
        self,
        result: DiscoveryResult,
        force: bool,
        started: int,
        error: Optional[BaseException] = None,
    ) -> None:
        if not self.diagnostics_recorder:
            return
        now = self._now()
        event = {
            "type": "llm_autodiscovery",
            "timestamp": now,
            **result.to_dict(),
            "force": force,
            "durationMs": max(0, now - started),
        }
        if error is not None:
            event["error"] = {"name": type(error).__name__, "message": str(error)}

        record = self.diagnostics_recorder.record
        try:
            if inspect.iscoroutinefunction(record):
                await record(event)
                return
            outcome = await asyncio.to_thread(record, event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"[DISCOVERY] Failed to record auto-discovery diagnostics event: {e}")


def normalize_endpoint(raw: str) -> str:
    """Scheme, host, port and path of an endpoint, without a trailing slash."""
    value = (raw or "").strip()
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError):
        return value
    if not url.scheme or not url.host:
        return value.rstrip("/")
    port = f":{url.port}" if url.port else ""
    return f"{url.scheme}://{url.host}{port}{url.path}".rstrip("/")
