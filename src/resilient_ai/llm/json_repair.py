"""Coerces model output into valid JSON.

Strategies are tried in order and the first one that parses wins:

1. the text as-is
2. the text with Markdown code fences stripped
3. the first top-level balanced ``{...}`` or ``[...]`` span that parses
4. everything from the first ``{`` to the last ``}``
5. an AI-assisted repair round, after which the list restarts at 1

Repair rounds are bounded. A dispatch failure inside a repair round aborts the
whole chain instead of being counted as a round.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable, Iterator, Optional

from .types import JsonRepairExhausted, RepairState

logger = logging.getLogger(__name__)

RepairFn = Callable[[str], str]

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_FENCE_CLOSE = re.compile(r"\r?\n?```\s*$")
_CLOSERS = {"{": "}", "[": "]"}

REPAIR_PROMPT = (
    "The following text was supposed to be valid JSON but could not be parsed. "
    "Fix it and return only the corrected JSON, with no explanation and no Markdown fences.\n\n"
    "{text}"
)


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (TypeError, ValueError):
        return False
    return True


def strip_fences(text: str) -> str:
    stripped = text.strip()
    stripped = _FENCE_OPEN.sub("", stripped, count=1)
    stripped = _FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def balanced_spans(text: str) -> Iterator[str]:
    """Yields top-level balanced object/array spans in one left-to-right pass.

    Nested spans are never yielded on their own. A span whose brackets do not
    match is dropped and scanning resumes after the offending bracket.
    """
    stack: list[str] = []
    start = 0
    in_string = False
    escaped = False
    for index, ch in enumerate(text):
        if not stack:
            if ch in _CLOSERS:
                stack.append(_CLOSERS[ch])
                start = index
                in_string = False
                escaped = False
            continue
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if stack.pop() != ch:
                stack.clear()
            elif not stack:
                yield text[start : index + 1]


def first_last_brace(text: str) -> Optional[str]:
    first = text.find("{")
    last = text.rfind("}")
    if first < 0 or last <= first:
        return None
    return text[first : last + 1]


def extract_json(text: str) -> Optional[str]:
    """Runs the local strategies only; returns the first candidate that parses."""
    if is_valid_json(text):
        return text

    unfenced = strip_fences(text)
    if unfenced != text and is_valid_json(unfenced):
        return unfenced

    for span in balanced_spans(text):
        if is_valid_json(span):
            return span

    candidate = first_last_brace(text)
    if candidate is not None and is_valid_json(candidate):
        return candidate
    return None


class ResponseNormalizer:
    def __init__(self, repair: Optional[RepairFn] = None, max_repair_rounds: int = 3) -> None:
        if max_repair_rounds < 0:
            raise ValueError("max_repair_rounds cannot be negative")
        self.repair = repair
        self.max_repair_rounds = max_repair_rounds

    def normalize(self, raw_text: str) -> str:
        state = RepairState(raw_text=raw_text, max_repair_rounds=self.max_repair_rounds if self.repair else 0)
        current = raw_text or ""

        while True:
            extracted = extract_json(current)
            if extracted is not None:
                if state.repair_round:
                    logger.info("JSON recovered after %d repair round(s)", state.repair_round)
                return extracted

            if state.remaining <= 0:
                logger.error("JSON repair exhausted after %d round(s)", state.repair_round)
                raise JsonRepairExhausted(raw_text=raw_text, rounds=state.repair_round)

            state.advance()
            logger.warning(
                "Reply is not valid JSON; repair round %d/%d",
                state.repair_round,
                state.max_repair_rounds,
            )
            current = self.repair(current) or ""
