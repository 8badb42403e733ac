"""HTTP helpers shared by the REST providers."""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from .types import ErrorKind, TransportFailure


def classify_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if 400 <= status_code < 500:
        return ErrorKind.BAD_REQUEST
    return ErrorKind.TRANSPORT


def post_json(
    url: str,
    payload: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30,
) -> Dict[str, Any]:
    """POSTs a JSON body and returns the decoded reply, raising TransportFailure on any error."""
    try:
        res = requests.post(url, json=payload, headers=headers or {}, timeout=timeout)
    except requests.Timeout as exc:
        raise TransportFailure(ErrorKind.TIMEOUT, f"Request timed out after {timeout}s") from exc
    except requests.RequestException as exc:
        raise TransportFailure(ErrorKind.TRANSPORT, str(exc)) from exc

    if res.status_code >= 400:
        body = (res.text or "").strip()
        raise TransportFailure(
            classify_status(res.status_code),
            f"HTTP {res.status_code}: {body[:400]}",
            status_code=res.status_code,
            body=body,
        )

    try:
        data = res.json()
    except ValueError as exc:
        raise TransportFailure(
            ErrorKind.TRANSPORT,
            f"Response is not JSON: {(res.text or '')[:200]}",
            status_code=res.status_code,
            body=res.text or "",
        ) from exc
    if not isinstance(data, dict):
        raise TransportFailure(ErrorKind.TRANSPORT, "Response JSON is not an object", status_code=res.status_code)
    return data
