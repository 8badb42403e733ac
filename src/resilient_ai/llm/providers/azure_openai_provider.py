"""Azure OpenAI chat completions provider."""

from __future__ import annotations

import time
from typing import Any, Dict, Mapping

from ..http import post_json
from ..types import AIRequest, ErrorKind, RawResponse, TransportFailure, Usage
from .base import system_prompt_for


def chat_messages(request: AIRequest) -> list[Dict[str, str]]:
    messages = []
    system = system_prompt_for(request)
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": request.prompt})
    return messages


def parse_chat_completion(data: Dict[str, Any], provider: str, model: str, latency_ms: int) -> RawResponse:
    """Maps an OpenAI-style chat completion body onto RawResponse."""
    choices = data.get("choices") or []
    if not choices:
        raise TransportFailure(ErrorKind.TRANSPORT, f"{provider} response has no choices")
    message = choices[0].get("message") or {}
    text = message.get("content") or ""

    usage = data.get("usage") or {}
    return RawResponse(
        text=text.strip(),
        provider=provider,
        model=data.get("model") or model,
        usage=Usage(
            tokens_in=int(usage.get("prompt_tokens", 0) or 0),
            tokens_out=int(usage.get("completion_tokens", 0) or 0),
        ),
        latency_ms=latency_ms,
        raw={"id": data.get("id")},
    )


class AzureOpenAIProvider:
    name = "azure_openai"
    required_credentials = ("api_key", "endpoint", "deployment")
    temperature_range = (0.0, 2.0)

    def __init__(self, api_version: str = "2024-06-01") -> None:
        self.api_version = api_version

    def send(self, request: AIRequest, credentials: Mapping[str, str], timeout: float) -> RawResponse:
        endpoint = credentials["endpoint"].rstrip("/")
        deployment = credentials["deployment"]
        url = (
            f"{endpoint}/openai/deployments/{deployment}/chat/completions"
            f"?api-version={self.api_version}"
        )
        payload = {
            "messages": chat_messages(request),
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }

        start = time.perf_counter()
        data = post_json(
            url,
            payload,
            headers={"api-key": credentials["api_key"], "Content-Type": "application/json"},
            timeout=timeout,
        )
        latency_ms = int((time.perf_counter() - start) * 1000)
        return parse_chat_completion(data, self.name, deployment, latency_ms)
