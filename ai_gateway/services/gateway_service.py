"""Application service: the single entry point for AI requests."""

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, cast

from ai_gateway.constants import DEFAULT_OPERATION_NAME, ProviderIdentity
from ai_gateway.errors import InvalidRequestError, ProviderCallError
from ai_gateway.message_mappers import create_messages, extract_content
from ai_gateway.metrics import MetricsRecorder, ProviderMetrics
from ai_gateway.model_registry import default_response_tokens, model_token_limit
from ai_gateway.orchestration.attempts import AttemptExecutor
from ai_gateway.orchestration.base import FailoverOrchestrator
from ai_gateway.orchestration.langgraph_flow import LangGraphFailoverOrchestrator
from ai_gateway.orchestration.sequential import SequentialFailoverOrchestrator
from ai_gateway.providers.base import ProviderTransport, RequestContext
from ai_gateway.providers.factory import build_transports
from ai_gateway.schemas import AIResponse, ChatMessage, ProviderSummary
from ai_gateway.settings import GatewaySettings, ProviderRegistry

logger = logging.getLogger(__name__)

PING_MESSAGES = (
    ChatMessage(role="system", content="You are a helpful assistant."),
    ChatMessage(role="user", content="Say 'Hello' in response."),
)
PING_MAX_TOKENS = 10


def validate_messages(messages: Sequence[ChatMessage]) -> tuple[ChatMessage, ...]:
    """Reject empty conversations and misplaced or repeated system messages."""
    if not messages:
        raise InvalidRequestError("messages must contain at least one message")
    system_positions = [index for index, message in enumerate(messages) if message.role == "system"]
    if len(system_positions) > 1:
        raise InvalidRequestError("messages may contain at most one system message")
    if system_positions and system_positions[0] != 0:
        raise InvalidRequestError("the system message must be the first message")
    return tuple(messages)


class AIGateway:
    """Resilient multi-provider request gateway.

    Built once by the composition root and shared by reference; the metrics
    recorder it owns is the single process-wide view of provider health.
    """

    create_messages = staticmethod(create_messages)
    extract_content = staticmethod(extract_content)

    def __init__(
        self,
        registry: ProviderRegistry,
        orchestrator: FailoverOrchestrator,
        executor: AttemptExecutor,
        metrics: MetricsRecorder,
        *,
        default_max_tokens: int | None = None,
    ) -> None:
        self._registry = registry
        self._orchestrator = orchestrator
        self._executor = executor
        self._metrics = metrics
        self._default_max_tokens = default_max_tokens

    def _token_budget(self, max_tokens: int | None) -> int:
        candidates = self._registry.candidates()
        ceiling = min(
            model_token_limit(config.deployment_or_model, config.identity) for config in candidates
        )
        if max_tokens is None:
            primary = self._registry.primary()
            max_tokens = self._default_max_tokens or default_response_tokens(
                primary.deployment_or_model, primary.identity
            )
        return min(max_tokens, ceiling)

    def submit(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int | None = None,
        operation_name: str = DEFAULT_OPERATION_NAME,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> AIResponse:
        """Generate text for ``messages``, retrying and failing over per policy.

        ``timeout`` bounds the whole call including retries and waits;
        setting ``cancel_event`` abandons the call before the next attempt
        or during a backoff wait. Raises GatewayError subclasses only.
        """
        if max_tokens is not None and max_tokens < 1:
            raise InvalidRequestError("max_tokens must be a positive integer")
        context = RequestContext(
            messages=validate_messages(messages),
            max_tokens=self._token_budget(max_tokens),
            operation_name=operation_name,
            deadline=time.monotonic() + timeout if timeout is not None else None,
            cancel_event=cancel_event,
        )
        logger.info(
            "AI request received",
            extra={
                "operation_name": operation_name,
                "message_count": len(context.messages),
                "max_tokens": context.max_tokens,
            },
        )
        response = self._orchestrator.run(context, self._registry.candidates())
        logger.info(
            "AI request completed",
            extra={
                "operation_name": operation_name,
                "provider": str(response.metadata.provider),
                "attempts": context.attempts_so_far,
                "response_time_ms": response.metadata.response_time_ms,
            },
        )
        return response

    def test_connection(self, identity: ProviderIdentity | None = None) -> bool:
        """Send one ping to a single provider, without retries or fail-over."""
        config = self._registry.resolve(identity) if identity else self._registry.primary()
        context = RequestContext(
            messages=PING_MESSAGES,
            max_tokens=PING_MAX_TOKENS,
            operation_name="connection_test",
        )
        try:
            self._executor.attempt(config, context)
        except ProviderCallError as error:
            logger.warning(
                "Connection test failed",
                extra={"provider": str(config.identity), "error_kind": str(error.kind)},
            )
            return False
        return True

    def metrics_snapshot(
        self, provider: ProviderIdentity | None = None
    ) -> ProviderMetrics | dict[ProviderIdentity, ProviderMetrics]:
        return self._metrics.snapshot(provider)

    def provider_summaries(self) -> list[ProviderSummary]:
        primary = self._registry.primary().identity
        return [
            ProviderSummary(
                identity=config.identity,
                model=config.deployment_or_model,
                credential=config.credential,
                endpoint=config.endpoint,
                primary=config.identity == primary,
            )
            for config in self._registry.candidates()
        ]

    def performance_summary(self) -> dict[str, Any]:
        snapshots = cast(dict[ProviderIdentity, ProviderMetrics], self._metrics.snapshot())
        return {
            "metrics": {
                str(provider): snapshot.model_dump(mode="json")
                for provider, snapshot in snapshots.items()
            },
            "configuration": {
                "providers": [
                    summary.model_dump(mode="json", by_alias=True)
                    for summary in self.provider_summaries()
                ],
                "maxRetries": self._executor.retry_config.max_retries,
                "defaultMaxTokens": self._default_max_tokens,
            },
        }


def build_gateway(
    settings: GatewaySettings,
    *,
    transports: Mapping[ProviderIdentity, ProviderTransport] | None = None,
    metrics: MetricsRecorder | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> AIGateway:
    """Compose a gateway from validated settings."""
    registry = ProviderRegistry.from_settings(settings)
    if transports is None:
        transports = build_transports(registry)
    metrics = metrics or MetricsRecorder()
    executor = AttemptExecutor(
        transports,
        metrics,
        settings.retry,
        settings.timeout_seconds,
        sleep=sleep,
        max_workers=sum(config.max_concurrency for config in registry.candidates()),
    )
    orchestrator: FailoverOrchestrator
    if settings.orchestrator == "langgraph":
        orchestrator = LangGraphFailoverOrchestrator(executor)
    else:
        orchestrator = SequentialFailoverOrchestrator(executor)
    return AIGateway(
        registry,
        orchestrator,
        executor,
        metrics,
        default_max_tokens=settings.max_response_tokens,
    )
