"""Bedrock transport using the default AWS credential chain."""

import logging
import time
from collections.abc import Callable
from typing import Any

from langchain_core.messages import AIMessage
from langchain_core.runnables import Runnable

from ai_gateway.constants import DEFAULT_BEDROCK_REGION, DEFAULT_TEMPERATURE, ProviderIdentity
from ai_gateway.message_mappers import bedrock_content_text, build_bedrock_messages
from ai_gateway.model_registry import default_response_tokens
from ai_gateway.schemas import AIResponse
from ai_gateway.settings import ProviderConfig

from .base import RequestContext, build_ai_response
from .classification import classify_bedrock_error, log_classified

logger = logging.getLogger(__name__)


class BedrockTransport:
    identity = ProviderIdentity.BEDROCK

    def __init__(
        self,
        get_bedrock_runnable: Callable[[], Runnable[dict[str, Any], AIMessage]],
    ) -> None:
        self._get_bedrock_runnable = get_bedrock_runnable

    def call(self, config: ProviderConfig, context: RequestContext, timeout: float) -> AIResponse:
        lc_messages = build_bedrock_messages(context.messages)

        params: dict[str, Any] = {
            "model_id": config.deployment_or_model,
            "region": config.extra.get("region", DEFAULT_BEDROCK_REGION),
            "messages": lc_messages,
            # Converse requires an explicit budget.
            "max_tokens": context.max_tokens
            or default_response_tokens(config.deployment_or_model, self.identity),
            "temperature": DEFAULT_TEMPERATURE,
            "timeout": timeout,
        }

        start = time.time()
        try:
            response = self._get_bedrock_runnable().invoke(
                params,
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
            error = classify_bedrock_error(exc, self.identity)
            log_classified(error, context.operation_name)
            raise error from exc
        duration_ms = int((time.time() - start) * 1000)

        content = bedrock_content_text(response.content)
        usage = response.usage_metadata
        tokens_used = usage.get("total_tokens") if usage else None

        response_metadata = response.response_metadata or {}
        request_id = (
            response_metadata.get("ResponseMetadata", {}).get("RequestId", "") or response.id or None
        )

        logger.info(
            "Chat completion generated",
            extra={
                "provider": str(self.identity),
                "operation_name": context.operation_name,
                "duration_ms": duration_ms,
                "model": config.deployment_or_model,
                "usage_total_tokens": tokens_used,
                "response_length": len(content),
                "response_id": request_id,
            },
        )
        return build_ai_response(
            provider=self.identity,
            content=content,
            duration_ms=duration_ms,
            tokens_used=tokens_used,
            model=config.deployment_or_model,
            response_id=request_id,
        )
