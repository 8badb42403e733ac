"""Shared AI client data structures and errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"

    @property
    def is_retryable(self) -> bool:
        return self in (ErrorKind.TIMEOUT, ErrorKind.TRANSPORT)


@dataclass
class AIRequest:
    prompt: str
    wants_structured_json: bool = False
    max_output_tokens: int = 4096
    temperature: float = 0.7
    timeout_seconds: Optional[float] = None
    system: Optional[str] = None
    model: Optional[str] = None

    def validate(self, temperature_range: tuple[float, float] = (0.0, 2.0)) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ConfigurationError("Prompt must not be empty")
        low, high = temperature_range
        if not low <= self.temperature <= high:
            raise ConfigurationError(
                f"Temperature {self.temperature} outside allowed range [{low}, {high}]"
            )
        if self.max_output_tokens <= 0:
            raise ConfigurationError("max_output_tokens must be positive")


@dataclass
class Usage:
    tokens_in: int = 0
    tokens_out: int = 0

    @property
    def total(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass
class RawResponse:
    """Provider reply normalized to a single shape."""

    text: str
    provider: str
    model: str = ""
    usage: Usage = field(default_factory=Usage)
    latency_ms: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryState:
    max_attempts: int
    attempt: int = 1
    last_error: Optional[ErrorKind] = None
    backoff_delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self, delay: float) -> None:
        if self.exhausted:
            raise RuntimeError("Retry budget already exhausted")
        self.attempt += 1
        self.backoff_delay = delay


@dataclass
class RepairState:
    raw_text: str
    max_repair_rounds: int
    repair_round: int = 0

    @property
    def remaining(self) -> int:
        return self.max_repair_rounds - self.repair_round

    def advance(self) -> None:
        if self.remaining <= 0:
            raise RuntimeError("Repair budget already exhausted")
        self.repair_round += 1


class AIClientError(RuntimeError):
    """Base class for every failure surfaced by the client pipeline."""


class ConfigurationError(AIClientError):
    """Invalid settings or request parameters."""


class CredentialAcquisitionFailed(AIClientError):
    """No bearer credential could be obtained."""


class TransportFailure(AIClientError):
    """A single HTTP attempt failed."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.body = body


class DispatchFailed(AIClientError):
    """The request could not be completed within the retry budget."""

    def __init__(self, cause: ErrorKind, attempts: int, last_error: TransportFailure) -> None:
        super().__init__(f"Dispatch failed after {attempts} attempt(s) ({cause.value}): {last_error}")
        self.cause = cause
        self.attempts = attempts
        self.last_error = last_error


class JsonRepairExhausted(AIClientError):
    """The reply could not be turned into valid JSON."""

    def __init__(self, raw_text: str, rounds: int) -> None:
        super().__init__(f"No valid JSON after {rounds} repair round(s)")
        self.raw_text = raw_text
        self.rounds = rounds
