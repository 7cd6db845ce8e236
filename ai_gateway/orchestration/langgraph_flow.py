"""LangGraph-based failover orchestration.

The retry/fail-over state machine is expressed as a graph:

    attempt --success--> END
    attempt --retry----> backoff --> attempt
    attempt --give up--> advance --> attempt | END
    attempt/backoff --cancelled--> END
"""

import logging
from collections.abc import Sequence
from typing import Literal, NotRequired, TypedDict, cast

from langgraph.graph import END, START, StateGraph

from ai_gateway.constants import ProviderIdentity
from ai_gateway.errors import ProviderCallError
from ai_gateway.orchestration.attempts import AttemptExecutor
from ai_gateway.providers.base import RequestContext
from ai_gateway.retry_policy import GiveUp
from ai_gateway.schemas import AIResponse
from ai_gateway.settings import ProviderConfig

from .base import FailoverOrchestrator

logger = logging.getLogger(__name__)

Route = Literal["done", "retry", "backoff", "advance", "exhausted", "cancelled"]


class FailoverGraphState(TypedDict):
    context: RequestContext
    candidates: list[ProviderConfig]
    index: int
    attempts_on_provider: int
    provider_errors: dict[ProviderIdentity, ProviderCallError]
    route: NotRequired[Route]
    delay: NotRequired[float]
    response: NotRequired[AIResponse]


class LangGraphFailoverOrchestrator(FailoverOrchestrator):
    def __init__(self, executor: AttemptExecutor) -> None:
        self._executor = executor
        graph = StateGraph(FailoverGraphState)
        graph.add_node("attempt", self._attempt)
        graph.add_node("backoff", self._backoff)
        graph.add_node("advance", self._advance)
        graph.add_edge(START, "attempt")
        graph.add_conditional_edges(
            "attempt",
            self._route,
            {"done": END, "cancelled": END, "backoff": "backoff", "advance": "advance"},
        )
        graph.add_conditional_edges(
            "backoff", self._route, {"cancelled": END, "retry": "attempt"}
        )
        graph.add_conditional_edges(
            "advance", self._route, {"exhausted": END, "retry": "attempt"}
        )
        self._graph = graph.compile()

    @staticmethod
    def _route(state: FailoverGraphState) -> Route:
        return state.get("route", "done")

    def _attempt(self, state: FailoverGraphState) -> dict[str, object]:
        context = state["context"]
        config = state["candidates"][state["index"]]
        if context.cancelled():
            return {"route": "cancelled"}
        attempts_on_provider = state["attempts_on_provider"] + 1
        try:
            response = self._executor.attempt(config, context)
        except ProviderCallError as error:
            provider_errors = {**state["provider_errors"], config.identity: error}
            update: dict[str, object] = {
                "attempts_on_provider": attempts_on_provider,
                "provider_errors": provider_errors,
            }
            if context.cancelled():
                return {**update, "route": "cancelled"}
            decision = self._executor.decide(error.kind, attempts_on_provider)
            if isinstance(decision, GiveUp):
                logger.warning(
                    "Giving up on provider",
                    extra={
                        "provider": str(config.identity),
                        "operation_name": context.operation_name,
                        "attempt": attempts_on_provider,
                        "error_kind": str(error.kind),
                        "reason": decision.reason,
                    },
                )
                return {**update, "route": "advance"}
            logger.warning(
                "Retrying provider after failure",
                extra={
                    "provider": str(config.identity),
                    "operation_name": context.operation_name,
                    "attempt": attempts_on_provider,
                    "error_kind": str(error.kind),
                    "delay_ms": int(decision.after * 1000),
                },
            )
            return {**update, "route": "backoff", "delay": decision.after}
        return {"attempts_on_provider": attempts_on_provider, "response": response, "route": "done"}

    def _backoff(self, state: FailoverGraphState) -> dict[str, object]:
        if not self._executor.wait_before_retry(state["context"], state.get("delay", 0.0)):
            return {"route": "cancelled"}
        return {"route": "retry"}

    def _advance(self, state: FailoverGraphState) -> dict[str, object]:
        index = state["index"] + 1
        if index >= len(state["candidates"]):
            return {"index": index, "route": "exhausted"}
        return {"index": index, "attempts_on_provider": 0, "route": "retry"}

    def _recursion_limit(self, candidate_count: int) -> int:
        # attempt + backoff per retry, one advance per provider, plus slack.
        per_provider = 2 * (self._executor.retry_config.max_retries + 1) + 1
        return candidate_count * per_provider + 10

    def run(self, context: RequestContext, candidates: Sequence[ProviderConfig]) -> AIResponse:
        provider_errors: dict[ProviderIdentity, ProviderCallError] = {}
        if not candidates:
            raise self._executor.exhausted_error(context, provider_errors)
        initial_state: FailoverGraphState = {
            "context": context,
            "candidates": list(candidates),
            "index": 0,
            "attempts_on_provider": 0,
            "provider_errors": provider_errors,
        }
        result = cast(
            "FailoverGraphState",
            self._graph.invoke(
                initial_state,
                config={"recursion_limit": self._recursion_limit(len(candidates))},
            ),
        )
        response = result.get("response")
        if response is not None:
            return response
        provider_errors = result["provider_errors"]
        if result.get("route") == "cancelled":
            raise self._executor.cancelled_error(context, provider_errors)
        raise self._executor.exhausted_error(context, provider_errors)
