"""Chat Completions transports for Azure OpenAI and OpenAI-compatible endpoints."""

import logging
import time
from collections.abc import Callable
from typing import Any

from langchain_core.runnables import Runnable
from openai import OpenAI

from ai_gateway.constants import DEFAULT_TEMPERATURE, ErrorKind, ProviderIdentity
from ai_gateway.errors import ProviderCallError
from ai_gateway.message_mappers import build_openai_messages
from ai_gateway.schemas import AIResponse
from ai_gateway.settings import ProviderConfig

from .base import RequestContext, build_ai_response
from .classification import classify_openai_error, log_classified

logger = logging.getLogger(__name__)


class OpenAIChatTransport:
    """Transport for every provider that speaks the Chat Completions API.

    Azure OpenAI gets managed-identity tokens through the client's
    ``azure_ad_token_provider``; other endpoints receive the token as the
    bearer credential through ``bearer_token_provider`` on each call.
    """

    def __init__(
        self,
        identity: ProviderIdentity,
        client: OpenAI,
        get_runnable: Callable[[OpenAI, str], Runnable[dict[str, Any], Any]],
        bearer_token_provider: Callable[[], str] | None = None,
    ) -> None:
        self.identity = identity
        self._client = client
        self._get_runnable = get_runnable
        self._bearer_token_provider = bearer_token_provider

    def _client_for_call(self) -> OpenAI:
        if self._bearer_token_provider is None:
            return self._client
        return self._client.with_options(api_key=self._bearer_token_provider())

    def call(self, config: ProviderConfig, context: RequestContext, timeout: float) -> AIResponse:
        request_params: dict[str, Any] = {
            "model": config.deployment_or_model,
            "messages": build_openai_messages(context.messages),
            "temperature": DEFAULT_TEMPERATURE,
            "timeout": timeout,
        }
        if context.max_tokens is not None:
            request_params["max_tokens"] = context.max_tokens

        start = time.time()
        try:
            runnable = self._get_runnable(self._client_for_call(), f"gateway_{self.identity}")
            completion = runnable.invoke(
                request_params,
                config={
                    "run_name": context.operation_name,
                    "tags": ["ai-gateway", str(self.identity), config.deployment_or_model],
                    "metadata": {
                        "operation_name": context.operation_name,
                        "attempt": context.attempts_so_far,
                        "message_count": len(context.messages),
                    },
                },
            )
        except Exception as exc:
            error = classify_openai_error(exc, self.identity)
            log_classified(error, context.operation_name)
            raise error from exc
        duration_ms = int((time.time() - start) * 1000)

        choices = getattr(completion, "choices", None)
        if not choices:
            raise ProviderCallError(
                ErrorKind.UNKNOWN, self.identity, "Provider returned a completion without choices"
            )
        content = choices[0].message.content or ""
        usage = getattr(completion, "usage", None)
        tokens_used = usage.total_tokens if usage else None

        logger.info(
            "Chat completion generated",
            extra={
                "provider": str(self.identity),
                "operation_name": context.operation_name,
                "duration_ms": duration_ms,
                "model": getattr(completion, "model", None),
                "usage_total_tokens": tokens_used,
                "response_length": len(content),
                "response_id": getattr(completion, "id", None),
            },
        )
        return build_ai_response(
            provider=self.identity,
            content=content,
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            model=getattr(completion, "model", None),
            response_id=getattr(completion, "id", None),
        )
