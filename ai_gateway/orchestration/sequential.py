"""Sequential retry-then-fail-over orchestration."""

import logging
from collections.abc import Sequence

from ai_gateway.constants import ProviderIdentity
from ai_gateway.errors import ProviderCallError
from ai_gateway.orchestration.attempts import AttemptExecutor
from ai_gateway.orchestration.base import FailoverOrchestrator
from ai_gateway.providers.base import RequestContext
from ai_gateway.retry_policy import GiveUp
from ai_gateway.schemas import AIResponse
from ai_gateway.settings import ProviderConfig

logger = logging.getLogger(__name__)


class SequentialFailoverOrchestrator(FailoverOrchestrator):
    def __init__(self, executor: AttemptExecutor) -> None:
        self._executor = executor

    def run(self, context: RequestContext, candidates: Sequence[ProviderConfig]) -> AIResponse:
        provider_errors: dict[ProviderIdentity, ProviderCallError] = {}
        for config in candidates:
            attempts_on_provider = 0
            while True:
                if context.cancelled():
                    raise self._executor.cancelled_error(context, provider_errors)
                attempts_on_provider += 1
                try:
                    return self._executor.attempt(config, context)
                except ProviderCallError as error:
                    failure = error
                    provider_errors[config.identity] = failure
                    if context.cancelled():
                        raise self._executor.cancelled_error(context, provider_errors) from error
                    decision = self._executor.decide(failure.kind, attempts_on_provider)

                if isinstance(decision, GiveUp):
                    logger.warning(
                        "Giving up on provider",
                        extra={
                            "provider": str(config.identity),
                            "operation_name": context.operation_name,
                            "attempt": attempts_on_provider,
                            "error_kind": str(failure.kind),
                            "reason": decision.reason,
                        },
                    )
                    break

                logger.warning(
                    "Retrying provider after failure",
                    extra={
                        "provider": str(config.identity),
                        "operation_name": context.operation_name,
                        "attempt": attempts_on_provider,
                        "error_kind": str(failure.kind),
                        "delay_ms": int(decision.after * 1000),
                    },
                )
                if not self._executor.wait_before_retry(context, decision.after):
                    raise self._executor.cancelled_error(context, provider_errors)

        raise self._executor.exhausted_error(context, provider_errors)
