"""
Application State Management
============================
Centralized state container for the web application: the services behind
the profile and test prompt routes, built once from configuration.
"""

import logging
import threading
from typing import Any, Dict, Optional

import httpx

from ...config import load_config
from ...llm.discovery import AutoDiscoveryService
from ...llm.engine import PromptExecutionEngine
from ...profiles.service import ProfileService
from ...security.audit_logger import AuditLogger
from ...security.credentials import CredentialService, FernetCredentialAdapter
from ...security.endpoint_policy import ProviderPolicy
from ...vault.service import VaultService
from ...vault.store import JsonFileVaultStore, VaultStore

logger = logging.getLogger("llm-profiles")


class AppState:
    """
    Singleton state container for the application.

    Holds:
    - Vault, credential and profile services
    - The prompt execution engine
    - The local server discovery service
    - The audit logger (when enabled)
    """

    _instance: Optional['AppState'] = None

    def __new__(cls) -> 'AppState':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self) -> None:
        """Initialize all state variables."""
        self.config: Dict[str, Any] = {}
        self.vault_service: Optional[VaultService] = None
        self.credential_service: Optional[CredentialService] = None
        self.profile_service: Optional[ProfileService] = None
        self.prompt_engine: Optional[PromptExecutionEngine] = None
        self.discovery_service: Optional[AutoDiscoveryService] = None
        self.audit_logger: Optional[AuditLogger] = None

        # Each request runs the engine on its own event loop
        self.prompt_lock = threading.Lock()
        self.discovery_lock = threading.Lock()

    def reset(self) -> None:
        """Reset all state to initial values."""
        self._initialize()

    def configure(
        self,
        config: Optional[Dict[str, Any]] = None,
        store: Optional[VaultStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        discovery_client: Optional[httpx.AsyncClient] = None,
    ) -> 'AppState':
        """
        Build every service from configuration.

        Args:
            config: Parsed configuration (loaded from YAML when omitted)
            store: Vault store override (defaults to the configured JSON file)
            http_client: HTTP client override for provider calls
            discovery_client: HTTP client override for local health checks
        """
        self.config = config or load_config()

        audit_config = self.config.get("audit", {})
        self.audit_logger = None
        if audit_config.get("enabled"):
            self.audit_logger = AuditLogger(
                log_directory=audit_config.get("directory", "./logs/audit"),
                signing_key=audit_config.get("signing_key"),
            )

        adapter = FernetCredentialAdapter.from_env(self.config.get("credentials", {}).get("encryption_key"))
        self.credential_service = CredentialService(
            adapter=adapter,
            on_fallback=self._record_fallback,
        )

        policy = ProviderPolicy.from_config(self.config.get("providers"))
        self.vault_service = VaultService(
            store or JsonFileVaultStore(self.config.get("vault", {}).get("path", "./data/profile-vault.json")),
            policy,
        )

        self.profile_service = ProfileService(
            self.vault_service,
            self.credential_service,
            diagnostics_recorder=self.audit_logger,
        )
        self.prompt_engine = PromptExecutionEngine(
            self.vault_service,
            self.credential_service,
            client=http_client,
            diagnostics_recorder=self.audit_logger,
            timeout_ms=int(self.config.get("prompt", {}).get("timeout_ms", 10000)),
        )
        self.discovery_service = AutoDiscoveryService.from_config(
            self.profile_service,
            self.config.get("discovery"),
            diagnostics_recorder=self.audit_logger,
            client=discovery_client,
        )

        logger.info(
            f"[PROFILES] Services ready (encryption "
            f"{'available' if self.credential_service.is_encryption_available() else 'unavailable'})"
        )
        return self

    @property
    def is_configured(self) -> bool:
        return self.profile_service is not None

    def _record_fallback(self, event) -> None:
        if self.audit_logger:
            self.audit_logger.record(event.to_dict())


# Global singleton instance
app_state = AppState()
