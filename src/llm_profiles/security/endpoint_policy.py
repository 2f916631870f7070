"""
Endpoint Policy

Decides which endpoints a provider profile may point at.

Rules:
1. Local providers (llama.cpp) must stay on this machine
2. Remote providers must use https://
3. Azure profiles must target an Azure OpenAI host
4. Remote providers only run after the user recorded consent
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from ..provider_types import ProviderType

# Localhost addresses that are always considered local
LOCALHOST_ADDRESSES = ["127.0.0.1", "localhost", "::1"]


@dataclass
class ProviderPolicy:
    """Per-deployment provider rules (see ``providers`` in the YAML config)."""
    remote_types: set[ProviderType] = field(
        default_factory=lambda: {ProviderType.AZURE, ProviderType.CUSTOM}
    )
    consent_required_types: set[ProviderType] = field(
        default_factory=lambda: {ProviderType.AZURE, ProviderType.CUSTOM}
    )
    local_hosts: list[str] = field(default_factory=lambda: list(LOCALHOST_ADDRESSES))
    azure_host_suffixes: list[str] = field(default_factory=lambda: [".openai.azure.com"])

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "ProviderPolicy":
        """
        Build a policy from the ``providers`` section of the config.

        Unknown provider names are ignored.
        """
        config = config or {}
        policy = cls()
        if "remote_types" in config:
            policy.remote_types = _provider_set(config["remote_types"])
        if "consent_required_types" in config:
            policy.consent_required_types = _provider_set(config["consent_required_types"])
        if config.get("local_hosts"):
            policy.local_hosts = [str(h).lower() for h in config["local_hosts"]]
        if config.get("azure_host_suffixes"):
            policy.azure_host_suffixes = [str(s).lower() for s in config["azure_host_suffixes"]]
        return policy

    def is_remote(self, provider_type: ProviderType) -> bool:
        return provider_type in self.remote_types

    def requires_consent(self, provider_type: ProviderType) -> bool:
        return provider_type in self.consent_required_types

    def is_local_host(self, host: str) -> bool:
        """
        Check whether ``host`` refers to this machine.

        Loopback IP literals (e.g. 127.0.0.2) count as local too.
        """
        host = (host or "").lower()
        if host in self.local_hosts:
            return True
        try:
            return ipaddress.ip_address(host).is_loopback
        except ValueError:
            return False

    def endpoint_errors(self, provider_type: ProviderType, endpoint_url: str) -> list[str]:
        """
        Validate an endpoint against the rules for its provider type.

        Args:
            provider_type: Provider the endpoint belongs to
            endpoint_url: Endpoint as entered by the user

        Returns:
            List of human-readable problems (empty when the endpoint is fine)
        """
        parsed = parse_url(endpoint_url)
        if parsed is None:
            return ["endpointUrl must be a valid URL"]

        scheme, host = parsed
        errors = []

        if self.is_remote(provider_type):
            if scheme != "https":
                errors.append("Remote providers must use https:// endpoints")
        elif scheme not in ("http", "https"):
            errors.append("Local providers must use http:// or https://")

        if provider_type == ProviderType.LLAMA_CPP and not self.is_local_host(host):
            errors.append("llama.cpp endpoints must point to localhost or 127.0.0.1")

        if provider_type == ProviderType.AZURE:
            if not any(host.endswith(suffix) for suffix in self.azure_host_suffixes):
                errors.append("Azure profiles must use a *.openai.azure.com endpoint")

        return errors


def parse_url(value: str) -> Optional[tuple[str, str]]:
    """
    Parse an absolute URL.

    Returns:
        ``(scheme, hostname)`` in lower case, or None when the value is not
        an absolute URL with a host
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = urlparse(value.strip())
        host = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not host:
        return None
    return parsed.scheme.lower(), host.lower()


def _provider_set(values) -> set[ProviderType]:
    result = set()
    for value in values or []:
        try:
            result.add(ProviderType(value))
        except ValueError:
            continue
    return result
