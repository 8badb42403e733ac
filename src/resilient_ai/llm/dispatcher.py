"""Request dispatch with bounded retries and error classification."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .routing import Transport
from .types import AIRequest, DispatchFailed, RawResponse, RetryState, TransportFailure

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Exponential backoff: base * multiplier ** (attempt - 1), capped at max_delay_seconds."""

    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay_seconds * (self.multiplier ** (attempt - 1))
        return max(0.0, min(delay, self.max_delay_seconds))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RetryPolicy":
        retry_cfg = config.get("retry", {})
        return cls(
            max_attempts=int(retry_cfg.get("max_attempts", 3)),
            base_delay_seconds=float(retry_cfg.get("base_delay_seconds", 2.0)),
            multiplier=float(retry_cfg.get("multiplier", 2.0)),
            max_delay_seconds=float(retry_cfg.get("max_delay_seconds", 30.0)),
        )


@dataclass
class TimeoutPolicy:
    """Larger replies get longer deadlines."""

    base_seconds: float = 30.0
    seconds_per_1k_tokens: float = 15.0
    max_seconds: float = 300.0

    def derive(self, max_output_tokens: int) -> float:
        timeout = self.base_seconds + (max_output_tokens / 1000.0) * self.seconds_per_1k_tokens
        return min(timeout, self.max_seconds)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "TimeoutPolicy":
        timeout_cfg = config.get("timeouts", {})
        return cls(
            base_seconds=float(timeout_cfg.get("base_seconds", 30.0)),
            seconds_per_1k_tokens=float(timeout_cfg.get("seconds_per_1k_tokens", 15.0)),
            max_seconds=float(timeout_cfg.get("max_seconds", 300.0)),
        )


class RequestDispatcher:
    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        timeouts: Optional[TimeoutPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.timeouts = timeouts or TimeoutPolicy()
        self.sleep = sleep

    def timeout_for(self, request: AIRequest) -> float:
        if request.timeout_seconds is not None and request.timeout_seconds > 0:
            return float(request.timeout_seconds)
        return self.timeouts.derive(request.max_output_tokens)

    def dispatch(self, request: AIRequest, transport: Transport) -> RawResponse:
        request.validate(transport.temperature_range)
        timeout = self.timeout_for(request)
        state = RetryState(max_attempts=self.policy.max_attempts)

        while True:
            try:
                response = transport.send(request, timeout)
            except TransportFailure as exc:
                state.last_error = exc.kind
                if not exc.kind.is_retryable:
                    logger.warning(
                        "%s call failed with %s on attempt %d; not retrying: %s",
                        transport.provider_name,
                        exc.kind.value,
                        state.attempt,
                        exc,
                    )
                    raise DispatchFailed(exc.kind, state.attempt, exc) from exc
                if state.exhausted:
                    logger.error(
                        "%s call failed after %d attempt(s): %s",
                        transport.provider_name,
                        state.attempt,
                        exc,
                    )
                    raise DispatchFailed(exc.kind, state.attempt, exc) from exc

                delay = self.policy.delay_for(state.attempt)
                logger.warning(
                    "%s call attempt %d/%d failed (%s); retrying in %.1fs",
                    transport.provider_name,
                    state.attempt,
                    state.max_attempts,
                    exc.kind.value,
                    delay,
                )
                self.sleep(delay)
                state.advance(delay)
                continue

            logger.debug(
                "%s replied in %d ms on attempt %d",
                transport.provider_name,
                response.latency_ms,
                state.attempt,
            )
            return response
