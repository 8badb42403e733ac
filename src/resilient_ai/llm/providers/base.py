"""AI provider interface."""

from __future__ import annotations

from typing import Mapping, Protocol

from ..types import AIRequest, RawResponse

JSON_ONLY_INSTRUCTION = "Respond with valid JSON only. Do not wrap it in Markdown or add commentary."


class AIProvider(Protocol):
    name: str
    required_credentials: tuple[str, ...]
    temperature_range: tuple[float, float]

    def send(self, request: AIRequest, credentials: Mapping[str, str], timeout: float) -> RawResponse:
        ...


def system_prompt_for(request: AIRequest) -> str:
    parts = [p for p in (request.system, JSON_ONLY_INSTRUCTION if request.wants_structured_json else None) if p]
    return "\n\n".join(parts)
