"""Ask-an-AI facade: routing, dispatch and optional JSON normalization."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .dispatcher import RequestDispatcher, RetryPolicy, TimeoutPolicy
from .json_repair import REPAIR_PROMPT, ResponseNormalizer
from .providers.azure_openai_provider import AzureOpenAIProvider
from .providers.base import AIProvider
from .providers.gemini_provider import GeminiProvider
from .providers.openai_provider import OpenAIProvider
from .providers.perplexity_provider import PerplexityProvider
from .routing import ProxiedTransport, ProxyRouter, Transport, credentials_from_env
from .types import AIRequest, ConfigurationError, DispatchFailed, ErrorKind, RawResponse, Usage

logger = logging.getLogger(__name__)


@dataclass
class AIResult:
    text: str
    provider: str
    model: str
    transport: str
    usage: Usage = field(default_factory=Usage)
    latency_ms: int = 0
    cost_usd: float = 0.0
    json_text: Optional[str] = None

    @property
    def data(self) -> Any:
        if self.json_text is None:
            return None
        return json.loads(self.json_text)


def build_providers(config: Dict[str, Any]) -> Dict[str, AIProvider]:
    provider_cfg = config.get("providers", {})
    return {
        "gemini": GeminiProvider(model=provider_cfg.get("gemini", {}).get("model", "gemini-2.0-flash")),
        "openai": OpenAIProvider(model=provider_cfg.get("openai", {}).get("model", "gpt-4.1-mini")),
        "azure_openai": AzureOpenAIProvider(
            api_version=provider_cfg.get("azure_openai", {}).get("api_version", "2024-06-01")
        ),
        "perplexity": PerplexityProvider(model=provider_cfg.get("perplexity", {}).get("model", "sonar")),
    }


class AIClient:
    def __init__(
        self,
        config: Dict[str, Any],
        router: ProxyRouter,
        dispatcher: Optional[RequestDispatcher] = None,
        providers: Optional[Mapping[str, AIProvider]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self.router = router
        self.dispatcher = dispatcher or RequestDispatcher(
            policy=RetryPolicy.from_config(config),
            timeouts=TimeoutPolicy.from_config(config),
        )
        self.providers = dict(providers or build_providers(config))
        self.environ = environ

    def provider(self, name: Optional[str] = None) -> AIProvider:
        provider_name = name or str(self.config.get("ai", {}).get("provider", "gemini"))
        provider = self.providers.get(provider_name)
        if provider is None:
            raise ConfigurationError(
                f"Unknown provider '{provider_name}'. Available: {', '.join(sorted(self.providers))}"
            )
        return provider

    def available_credentials(self, provider: AIProvider, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        available = credentials_from_env(provider.name, self.environ)
        for key, value in (overrides or {}).items():
            if value:
                available[key] = value
        return available

    def transport_mode(self, provider_name: Optional[str] = None, credentials: Optional[Mapping[str, str]] = None) -> str:
        """Reports "direct" or "proxied" without acquiring a bearer credential."""
        provider = self.provider(provider_name)
        return self.router.mode_for(provider, self.available_credentials(provider, credentials))

    def _estimate_cost(self, provider: str, model: str, usage: Usage) -> float:
        pricing = self.config.get("pricing", {}).get(f"{provider}:{model}")
        if not pricing:
            return 0.0
        in_price = float(pricing.get("input_per_1k", 0.0))
        out_price = float(pricing.get("output_per_1k", 0.0))
        return ((usage.tokens_in / 1000.0) * in_price) + ((usage.tokens_out / 1000.0) * out_price)

    def _dispatch(
        self,
        request: AIRequest,
        provider: AIProvider,
        available: Mapping[str, str],
        transport: Transport,
    ) -> tuple[RawResponse, Transport]:
        try:
            return self.dispatcher.dispatch(request, transport), transport
        except DispatchFailed as exc:
            if exc.cause is not ErrorKind.UNAUTHORIZED or not isinstance(transport, ProxiedTransport):
                raise
            logger.warning("Proxy rejected the bearer credential; refreshing it once")
            if self.router.credential_manager is not None:
                self.router.credential_manager.invalidate()
            transport = self.router.select_transport(provider, available, force_refresh=True)
            return self.dispatcher.dispatch(request, transport), transport

    def ask(
        self,
        prompt: str,
        provider: Optional[str] = None,
        return_json: bool = False,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        system: Optional[str] = None,
        model: Optional[str] = None,
        credentials: Optional[Mapping[str, str]] = None,
    ) -> AIResult:
        ai_cfg = self.config.get("ai", {})
        request = AIRequest(
            prompt=prompt,
            wants_structured_json=return_json,
            max_output_tokens=int(max_tokens if max_tokens is not None else ai_cfg.get("max_tokens", 4096)),
            temperature=float(temperature if temperature is not None else ai_cfg.get("temperature", 0.7)),
            timeout_seconds=timeout_seconds,
            system=system,
            model=model,
        )
        ai_provider = self.provider(provider)
        available = self.available_credentials(ai_provider, credentials)
        transport = self.router.select_transport(ai_provider, available)

        response, transport = self._dispatch(request, ai_provider, available, transport)
        usage = Usage(tokens_in=response.usage.tokens_in, tokens_out=response.usage.tokens_out)

        json_text = None
        if return_json:
            repair_cfg = self.config.get("json_repair", {})
            repair_temperature = float(repair_cfg.get("repair_temperature", 0.0))

            def repair(text: str) -> str:
                nonlocal transport
                fix_request = AIRequest(
                    prompt=REPAIR_PROMPT.format(text=text),
                    wants_structured_json=True,
                    max_output_tokens=request.max_output_tokens,
                    temperature=repair_temperature,
                    timeout_seconds=timeout_seconds,
                    model=model,
                )
                fixed, transport = self._dispatch(fix_request, ai_provider, available, transport)
                usage.tokens_in += fixed.usage.tokens_in
                usage.tokens_out += fixed.usage.tokens_out
                return fixed.text

            normalizer = ResponseNormalizer(
                repair=repair,
                max_repair_rounds=int(repair_cfg.get("max_repair_rounds", 3)),
            )
            json_text = normalizer.normalize(response.text)

        provider_key = ai_provider.name
        cost_usd = self._estimate_cost(provider_key, response.model, usage)
        logger.info(
            "%s via %s: %d in / %d out tokens, %d ms, ~$%.5f",
            provider_key,
            transport.mode,
            usage.tokens_in,
            usage.tokens_out,
            response.latency_ms,
            cost_usd,
        )
        return AIResult(
            text=response.text,
            provider=response.provider,
            model=response.model,
            transport=transport.mode,
            usage=usage,
            latency_ms=response.latency_ms,
            cost_usd=cost_usd,
            json_text=json_text,
        )
