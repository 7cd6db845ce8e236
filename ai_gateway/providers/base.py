"""Provider transport interface and per-request context."""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

from ai_gateway.constants import CHARS_PER_TOKEN_ESTIMATE, DEFAULT_OPERATION_NAME, ProviderIdentity
from ai_gateway.schemas import AIResponse, ChatMessage, ResponseMetadata
from ai_gateway.settings import ProviderConfig


@dataclass
class RequestContext:
    """Transient state for one gateway call, discarded once the call resolves."""

    messages: tuple[ChatMessage, ...]
    max_tokens: int | None = None
    operation_name: str = DEFAULT_OPERATION_NAME
    attempts_so_far: int = 0
    deadline: float | None = None
    cancel_event: threading.Event | None = field(default=None, repr=False)

    def remaining(self) -> float | None:
        """Seconds left before the overall deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def cancelled(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline


class ProviderTransport(Protocol):
    identity: ProviderIdentity

    def call(self, config: ProviderConfig, context: RequestContext, timeout: float) -> AIResponse:
        """Send one request; raise ProviderCallError on any classified failure."""
        ...


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)


def build_ai_response(
    *,
    provider: ProviderIdentity,
    content: str,
    duration_ms: int,
    tokens_used: int | None,
    model: str | None = None,
    response_id: str | None = None,
) -> AIResponse:
    estimated = tokens_used is None
    return AIResponse(
        content=content,
        metadata=ResponseMetadata(
            provider=provider,
            response_time_ms=duration_ms,
            tokens_used=estimate_tokens(content) if estimated else tokens_used,
            tokens_estimated=estimated,
            model=model,
            response_id=response_id,
        ),
    )
