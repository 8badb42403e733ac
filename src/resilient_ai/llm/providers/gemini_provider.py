"""Google Gemini REST provider."""

from __future__ import annotations

import time
from typing import Mapping

from ..http import post_json
from ..types import AIRequest, ErrorKind, RawResponse, TransportFailure, Usage
from .base import system_prompt_for

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiProvider:
    name = "gemini"
    required_credentials = ("api_key",)
    temperature_range = (0.0, 2.0)

    def __init__(self, model: str = "gemini-2.0-flash", base_url: str = GEMINI_BASE_URL) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")

    def send(self, request: AIRequest, credentials: Mapping[str, str], timeout: float) -> RawResponse:
        model = request.model or self.model
        url = f"{self.base_url}/{model}:generateContent"
        generation_config = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_output_tokens,
        }
        if request.wants_structured_json:
            generation_config["responseMimeType"] = "application/json"

        payload = {
            "contents": [{"parts": [{"text": request.prompt}]}],
            "generationConfig": generation_config,
        }
        system = system_prompt_for(request)
        if system:
            payload["system_instruction"] = {"parts": [{"text": system}]}

        start = time.perf_counter()
        data = post_json(
            url,
            payload,
            headers={"x-goog-api-key": credentials["api_key"]},
            timeout=timeout,
        )
        latency_ms = int((time.perf_counter() - start) * 1000)

        candidates = data.get("candidates", [])
        if not candidates:
            # Blocked prompts come back as 200 with promptFeedback and no candidates.
            reason = data.get("promptFeedback", {}).get("blockReason", "no candidates")
            raise TransportFailure(ErrorKind.BAD_REQUEST, f"Gemini returned no candidates: {reason}")
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))

        usage = data.get("usageMetadata", {})
        return RawResponse(
            text=text.strip(),
            provider=self.name,
            model=model,
            usage=Usage(
                tokens_in=int(usage.get("promptTokenCount", 0) or 0),
                tokens_out=int(usage.get("candidatesTokenCount", 0) or 0),
            ),
            latency_ms=latency_ms,
            raw={"responseId": data.get("responseId")},
        )
