"""Perplexity chat completions provider."""

from __future__ import annotations

import time
from typing import Mapping

from ..http import post_json
from ..types import AIRequest, RawResponse
from .azure_openai_provider import chat_messages, parse_chat_completion

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"


class PerplexityProvider:
    name = "perplexity"
    required_credentials = ("api_key",)
    temperature_range = (0.0, 2.0)

    def __init__(self, model: str = "sonar", url: str = PERPLEXITY_URL) -> None:
        self.model = model
        self.url = url

    def send(self, request: AIRequest, credentials: Mapping[str, str], timeout: float) -> RawResponse:
        model = request.model or self.model
        payload = {
            "model": model,
            "messages": chat_messages(request),
            "max_tokens": request.max_output_tokens,
            "temperature": request.temperature,
        }

        start = time.perf_counter()
        data = post_json(
            self.url,
            payload,
            headers={"Authorization": f"Bearer {credentials['api_key']}"},
            timeout=timeout,
        )
        latency_ms = int((time.perf_counter() - start) * 1000)
        result = parse_chat_completion(data, self.name, model, latency_ms)
        if data.get("citations"):
            result.raw["citations"] = list(data["citations"])
        return result
