"""Orchestration interfaces for provider failover."""

from collections.abc import Sequence
from typing import Protocol

from ai_gateway.providers.base import RequestContext
from ai_gateway.schemas import AIResponse
from ai_gateway.settings import ProviderConfig


class FailoverOrchestrator(Protocol):
    def run(self, context: RequestContext, candidates: Sequence[ProviderConfig]) -> AIResponse:
        """Try candidates in order with per-provider retries until one succeeds."""
