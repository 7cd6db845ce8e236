"""Single-attempt execution shared by the failover orchestrators."""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait

from ai_gateway.constants import ErrorKind, ProviderIdentity
from ai_gateway.errors import (
    AllProvidersFailedError,
    GatewayCancelledError,
    ProviderCallError,
    UnconfiguredProviderError,
)
from ai_gateway.metrics import AttemptOutcome, MetricsRecorder
from ai_gateway.providers.base import ProviderTransport, RequestContext
from ai_gateway.retry_policy import RetryDecision, decide
from ai_gateway.schemas import AIResponse
from ai_gateway.settings import ProviderConfig, RetryPolicyConfig

logger = logging.getLogger(__name__)

CANCEL_POLL_INTERVAL = 0.05
# Failures raised before any provider response arrived.
NO_RESPONSE_ERROR_KINDS = frozenset({ErrorKind.TRANSIENT_NETWORK, ErrorKind.UNKNOWN})


class AttemptExecutor:
    """Runs one attempt against one provider and records exactly one metrics update.

    Concurrent attempts against the same provider are capped by a per-provider
    semaphore sized from ``ProviderConfig.max_concurrency``. Transport calls run
    on a worker pool so a cancelled or timed-out attempt can be abandoned while
    its network I/O is still in flight.
    """

    def __init__(
        self,
        transports: Mapping[ProviderIdentity, ProviderTransport],
        metrics: MetricsRecorder,
        retry_config: RetryPolicyConfig,
        attempt_timeout: float,
        *,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int | None = None,
    ) -> None:
        self._transports = dict(transports)
        self._metrics = metrics
        self.retry_config = retry_config
        self._attempt_timeout = attempt_timeout
        self._sleep = sleep
        self._slots: dict[ProviderIdentity, threading.BoundedSemaphore] = {}
        self._slots_lock = threading.Lock()
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ai-gateway-attempt"
        )

    def _slot_for(self, config: ProviderConfig) -> threading.BoundedSemaphore:
        with self._slots_lock:
            slot = self._slots.get(config.identity)
            if slot is None:
                slot = threading.BoundedSemaphore(config.max_concurrency)
                self._slots[config.identity] = slot
            return slot

    def _provider_slot(self, config: ProviderConfig, timeout: float) -> threading.BoundedSemaphore:
        slot = self._slot_for(config)
        if not slot.acquire(timeout=timeout):
            raise ProviderCallError(
                ErrorKind.TIMEOUT,
                config.identity,
                f"No free request slot for {config.identity} within {timeout:.2f}s",
            )
        return slot

    def _await_call(
        self, future: Future, config: ProviderConfig, context: RequestContext, timeout: float
    ) -> AIResponse:
        """Wait for the worker until it finishes, the attempt times out or the call is cancelled."""
        give_up_at = time.monotonic() + timeout
        while True:
            left = give_up_at - time.monotonic()
            done, _ = wait([future], timeout=max(min(left, CANCEL_POLL_INTERVAL), 0.0))
            if done:
                return future.result()
            if context.cancelled():
                if future.done():
                    return future.result()
                raise ProviderCallError(
                    ErrorKind.TIMEOUT,
                    config.identity,
                    f"Attempt on {config.identity} abandoned after cancellation",
                )
            if left <= 0:
                raise ProviderCallError(
                    ErrorKind.TIMEOUT,
                    config.identity,
                    f"No response from {config.identity} within {timeout:.2f}s",
                )

    def attempt_timeout(self, context: RequestContext) -> float:
        remaining = context.remaining()
        if remaining is None:
            return self._attempt_timeout
        return min(self._attempt_timeout, remaining)

    def attempt(self, config: ProviderConfig, context: RequestContext) -> AIResponse:
        transport = self._transports.get(config.identity)
        if transport is None:
            raise UnconfiguredProviderError(f"No transport configured for provider {config.identity}")

        context.attempts_so_far += 1
        timeout = self.attempt_timeout(context)
        start = time.monotonic()
        try:
            slot = self._provider_slot(config, timeout)
            # The slot stays held until the worker returns, even for an abandoned attempt.
            try:
                future = self._pool.submit(transport.call, config, context, timeout)
            except BaseException:
                slot.release()
                raise
            future.add_done_callback(lambda _: slot.release())
            response = self._await_call(future, config, context, timeout)
        except ProviderCallError as error:
            failure = error
        except Exception as exc:
            logger.exception(
                "Provider transport raised an unclassified error",
                extra={"provider": str(config.identity), "operation_name": context.operation_name},
            )
            failure = ProviderCallError(ErrorKind.UNKNOWN, config.identity, str(exc) or type(exc).__name__)
            failure.__cause__ = exc
        else:
            self._metrics.record(
                config.identity,
                AttemptOutcome(
                    success=True,
                    elapsed=time.monotonic() - start,
                    tokens_used=response.metadata.tokens_used,
                ),
            )
            return response

        # Without a provider response, an attempt cut short by cancellation counts as a timeout.
        if (
            context.cancelled()
            and failure.status_code is None
            and failure.kind in NO_RESPONSE_ERROR_KINDS
        ):
            failure = ProviderCallError(
                ErrorKind.TIMEOUT,
                config.identity,
                f"Attempt abandoned after cancellation: {failure}",
            )
        self._metrics.record(
            config.identity,
            AttemptOutcome(
                success=False,
                elapsed=time.monotonic() - start,
                error_kind=failure.kind,
                rate_limited=failure.rate_limited,
                error_message=str(failure),
            ),
        )
        raise failure

    def decide(self, kind: ErrorKind, attempts_on_provider: int) -> RetryDecision:
        return decide(self.retry_config, kind, attempts_on_provider)

    def wait_before_retry(self, context: RequestContext, delay: float) -> bool:
        """Pause before the next attempt; False when the call was cancelled meanwhile."""
        remaining = context.remaining()
        if remaining is not None and delay >= remaining:
            return False
        if context.cancel_event is not None:
            return not context.cancel_event.wait(delay)
        if delay > 0:
            self._sleep(delay)
        return not context.cancelled()

    def cancelled_error(
        self, context: RequestContext, provider_errors: Mapping[ProviderIdentity, ProviderCallError]
    ) -> GatewayCancelledError:
        logger.warning(
            "AI request cancelled",
            extra={"operation_name": context.operation_name, "attempts": context.attempts_so_far},
        )
        return GatewayCancelledError(
            f"{context.operation_name} was cancelled after {context.attempts_so_far} attempts",
            attempts=context.attempts_so_far,
            provider_errors=provider_errors,
        )

    def exhausted_error(
        self, context: RequestContext, provider_errors: Mapping[ProviderIdentity, ProviderCallError]
    ) -> AllProvidersFailedError:
        summary = "; ".join(
            f"{provider}: {error.kind} ({error})" for provider, error in provider_errors.items()
        )
        logger.error(
            "All providers failed",
            extra={
                "operation_name": context.operation_name,
                "attempts": context.attempts_so_far,
                "providers": [str(p) for p in provider_errors],
            },
        )
        last_error = next(reversed(provider_errors.values()), None)
        return AllProvidersFailedError(
            f"All providers failed for {context.operation_name}. {summary}",
            attempts=context.attempts_so_far,
            provider_errors=provider_errors,
            cause=last_error,
        )
