"""Direct-vs-proxied transport selection."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Union

from ..credentials import Credential, CredentialManager
from .providers.base import AIProvider
from .providers.proxy_provider import ProxyProvider
from .types import AIRequest, ConfigurationError, RawResponse

logger = logging.getLogger(__name__)

# Environment variables per provider credential, first match wins.
PROVIDER_ENV: Dict[str, Dict[str, tuple[str, ...]]] = {
    "azure_openai": {
        "api_key": ("AZURE_OPENAI_API_KEY", "API_KEY_AZURE_OPENAI"),
        "endpoint": ("AZURE_OPENAI_ENDPOINT",),
        "deployment": ("AZURE_OPENAI_DEPLOYMENT", "AZURE_OPENAI_DEPLOYMENT_NAME"),
    },
    "openai": {
        "api_key": ("OPENAI_API_KEY", "API_KEY_OPENAI"),
    },
    "gemini": {
        "api_key": ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY_GEMINI"),
    },
    "perplexity": {
        "api_key": ("PERPLEXITY_API_KEY", "API_KEY_PERPLEXITY"),
    },
}


def credentials_from_env(provider: str, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = os.environ if environ is None else environ
    found: Dict[str, str] = {}
    for field_name, names in PROVIDER_ENV.get(provider, {}).items():
        for name in names:
            value = env.get(name)
            if value and value.strip():
                found[field_name] = value.strip()
                break
    return found


@dataclass(frozen=True)
class DirectTransport:
    provider: AIProvider
    credentials: Mapping[str, str] = field(repr=False)
    mode = "direct"

    @property
    def provider_name(self) -> str:
        return self.provider.name

    @property
    def temperature_range(self) -> tuple[float, float]:
        return self.provider.temperature_range

    def send(self, request: AIRequest, timeout: float) -> RawResponse:
        return self.provider.send(request, self.credentials, timeout)


@dataclass(frozen=True)
class ProxiedTransport:
    proxy_url: str
    bearer: Credential = field(repr=False)
    provider: ProxyProvider = field(default_factory=ProxyProvider)
    mode = "proxied"

    @property
    def provider_name(self) -> str:
        return self.provider.name

    @property
    def temperature_range(self) -> tuple[float, float]:
        return self.provider.temperature_range

    def send(self, request: AIRequest, timeout: float) -> RawResponse:
        return self.provider.send(request, {"proxy_url": self.proxy_url, "token": self.bearer.token}, timeout)


Transport = Union[DirectTransport, ProxiedTransport]


def has_all_credentials(provider: AIProvider, available: Mapping[str, Optional[str]]) -> bool:
    return all((available.get(name) or "").strip() for name in provider.required_credentials)


class ProxyRouter:
    def __init__(self, credential_manager: Optional[CredentialManager], proxy_url: Optional[str]) -> None:
        self.credential_manager = credential_manager
        self.proxy_url = proxy_url

    def mode_for(self, provider: AIProvider, available: Mapping[str, Optional[str]]) -> str:
        """Returns the transport mode that would be used, without fetching a bearer."""
        if has_all_credentials(provider, available):
            return DirectTransport.mode
        if not self.proxy_url:
            missing = [name for name in provider.required_credentials if not (available.get(name) or "").strip()]
            raise ConfigurationError(
                f"{provider.name} is missing {', '.join(missing)} and no proxy URL is configured"
            )
        return ProxiedTransport.mode

    def select_transport(
        self,
        provider: AIProvider,
        available: Mapping[str, Optional[str]],
        force_refresh: bool = False,
    ) -> Transport:
        if self.mode_for(provider, available) == DirectTransport.mode:
            creds = {name: str(available[name]).strip() for name in provider.required_credentials}
            logger.debug("Using direct transport for %s", provider.name)
            return DirectTransport(provider=provider, credentials=creds)

        if self.credential_manager is None:
            raise ConfigurationError("Proxied transport needs a credential manager")

        logger.debug("Using proxied transport for %s", provider.name)
        bearer = self.credential_manager.get_credential(force_refresh=force_refresh)
        return ProxiedTransport(
            proxy_url=self.proxy_url,
            bearer=bearer,
            provider=ProxyProvider(upstream=provider.name),
        )
