"""Hosted proxy that holds the real provider keys."""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Mapping

from ..http import post_json
from ..types import AIRequest, ErrorKind, RawResponse, TransportFailure, Usage

PROXY_ERRORS = {
    "bad request": ErrorKind.BAD_REQUEST,
    "rate limit exceeded": ErrorKind.RATE_LIMITED,
    "unauthorized": ErrorKind.UNAUTHORIZED,
    "invalid token": ErrorKind.UNAUTHORIZED,
    "token expired": ErrorKind.UNAUTHORIZED,
}


def classify_proxy_error(message: str) -> ErrorKind:
    return PROXY_ERRORS.get(message.strip().lower(), ErrorKind.TRANSPORT)


def _error_from_body(body: str) -> str:
    try:
        data = json.loads(body) if body else None
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    error = data.get("Error") or data.get("error") or ""
    if isinstance(error, dict):
        error = error.get("message", "")
    return str(error)


def _usage_from(payload: Any) -> Usage:
    if not isinstance(payload, dict):
        return Usage()
    tokens_in = payload.get("prompt_tokens", payload.get("promptTokenCount", payload.get("input_tokens", 0)))
    tokens_out = payload.get(
        "completion_tokens", payload.get("candidatesTokenCount", payload.get("output_tokens", 0))
    )
    return Usage(tokens_in=int(tokens_in or 0), tokens_out=int(tokens_out or 0))


class ProxyProvider:
    name = "proxy"
    required_credentials = ("proxy_url", "token")
    temperature_range = (0.0, 2.0)

    def __init__(self, upstream: str = "") -> None:
        self.upstream = upstream

    def build_payload(self, request: AIRequest) -> Dict[str, Any]:
        prompt = request.prompt
        if request.system:
            prompt = f"{request.system}\n\n{prompt}"
        return {
            "Prompt": prompt,
            "MaxTokens": request.max_output_tokens,
            "Temperature": request.temperature,
            "ReturnJsonResponse": request.wants_structured_json,
        }

    def send(self, request: AIRequest, credentials: Mapping[str, str], timeout: float) -> RawResponse:
        start = time.perf_counter()
        try:
            data = post_json(
                credentials["proxy_url"],
                self.build_payload(request),
                headers={
                    "Authorization": f"Bearer {credentials['token']}",
                    "Content-Type": "application/json",
                },
                timeout=timeout,
            )
        except TransportFailure as exc:
            # Error names in the body take precedence over the HTTP status.
            body_error = _error_from_body(exc.body)
            if body_error and classify_proxy_error(body_error) is not ErrorKind.TRANSPORT:
                raise TransportFailure(
                    classify_proxy_error(body_error),
                    f"Proxy error: {body_error}",
                    status_code=exc.status_code,
                    body=exc.body,
                ) from exc
            raise
        latency_ms = int((time.perf_counter() - start) * 1000)

        error = data.get("Error") or data.get("error")
        if error:
            message = str(error.get("message", error) if isinstance(error, dict) else error)
            raise TransportFailure(classify_proxy_error(message), f"Proxy error: {message}", body=str(data))

        text = data.get("response")
        if not isinstance(text, str):
            raise TransportFailure(ErrorKind.TRANSPORT, "Proxy response has no 'response' field", body=str(data))

        return RawResponse(
            text=text.strip(),
            provider=f"{self.name}:{self.upstream}" if self.upstream else self.name,
            model=str(data.get("model", "")),
            usage=_usage_from(data.get("usage")),
            latency_ms=latency_ms,
            raw={"usage": data.get("usage")},
        )
