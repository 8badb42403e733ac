"""OpenAI Responses API provider."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping, Optional

import openai

from ..http import classify_status
from ..types import AIRequest, ErrorKind, RawResponse, TransportFailure, Usage
from .base import system_prompt_for


def _default_client_factory(api_key: str) -> Any:
    # Retries belong to the dispatcher, not the SDK.
    return openai.OpenAI(api_key=api_key, max_retries=0)


def translate_openai_error(exc: openai.OpenAIError) -> TransportFailure:
    if isinstance(exc, openai.APITimeoutError):
        return TransportFailure(ErrorKind.TIMEOUT, str(exc))
    if isinstance(exc, openai.APIConnectionError):
        return TransportFailure(ErrorKind.TRANSPORT, str(exc))
    if isinstance(exc, openai.APIStatusError):
        return TransportFailure(
            classify_status(exc.status_code),
            f"HTTP {exc.status_code}: {exc.message}",
            status_code=exc.status_code,
        )
    return TransportFailure(ErrorKind.TRANSPORT, str(exc))


class OpenAIProvider:
    name = "openai"
    required_credentials = ("api_key",)
    temperature_range = (0.0, 2.0)

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        client_factory: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.model = model
        self._client_factory = client_factory or _default_client_factory
        self._clients: Dict[str, Any] = {}

    def _client(self, api_key: str) -> Any:
        if api_key not in self._clients:
            self._clients[api_key] = self._client_factory(api_key)
        return self._clients[api_key]

    def send(self, request: AIRequest, credentials: Mapping[str, str], timeout: float) -> RawResponse:
        model = request.model or self.model
        input_payload = []
        system = system_prompt_for(request)
        if system:
            input_payload.append({"role": "system", "content": system})
        input_payload.append({"role": "user", "content": request.prompt})

        start = time.perf_counter()
        try:
            response = self._client(credentials["api_key"]).responses.create(
                model=model,
                temperature=request.temperature,
                max_output_tokens=request.max_output_tokens,
                input=input_payload,
                timeout=timeout,
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc) from exc

        latency_ms = int((time.perf_counter() - start) * 1000)
        text = getattr(response, "output_text", "") or ""
        usage = getattr(response, "usage", None)

        return RawResponse(
            text=text.strip(),
            provider=self.name,
            model=model,
            usage=Usage(
                tokens_in=int(getattr(usage, "input_tokens", 0) or 0),
                tokens_out=int(getattr(usage, "output_tokens", 0) or 0),
            ),
            latency_ms=latency_ms,
            raw={"id": getattr(response, "id", None)},
        )
