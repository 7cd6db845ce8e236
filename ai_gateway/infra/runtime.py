"""Runtime infrastructure helpers for secrets, tracing, clients and provider runnables."""

import logging
import os
from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from langchain_aws import ChatBedrockConverse
from langchain_core.messages import AIMessage
from langchain_core.runnables import Runnable, RunnableLambda
from langsmith import traceable
from langsmith.run_trees import get_cached_client
from openai import AzureOpenAI, OpenAI

from ai_gateway.constants import (
    DEFAULT_AZURE_OPENAI_API_VERSION,
    LANGSMITH_PROJECT,
    ProviderIdentity,
)
from ai_gateway.credentials import ManagedIdentityTokenProvider
from ai_gateway.errors import ConfigurationError
from ai_gateway.settings import ProviderConfig

logger = logging.getLogger(__name__)

OLLAMA_PLACEHOLDER_API_KEY = "ollama"


def _read_parameter(ssm_client: Any, parameter_name: str) -> str:
    try:
        result = ssm_client.get_parameter(Name=parameter_name, WithDecryption=True)
    except (BotoCoreError, ClientError) as exc:
        raise ConfigurationError(f"Cannot read SSM parameter {parameter_name}: {exc}") from exc
    value = result["Parameter"].get("Value")
    if not value:
        raise ConfigurationError(f"SSM parameter {parameter_name} is empty")
    logger.info("Secure parameter resolved", extra={"parameter_name": parameter_name})
    return value


@lru_cache(maxsize=1)
def get_ssm_client() -> Any:
    return boto3.client("ssm", region_name=os.environ.get("AWS_REGION"))


def resolve_secure_parameter(parameter_name: str) -> str:
    """Resolve a provider key stored as an SSM SecureString (``<PREFIX>_API_KEY_PARAMETER``)."""
    return _read_parameter(get_ssm_client(), parameter_name)


def _langsmith_api_key() -> str | None:
    api_key = os.environ.get("LANGSMITH_API_KEY")
    parameter_name = os.environ.get("LANGSMITH_API_KEY_PARAMETER")
    if api_key or not parameter_name:
        return api_key
    try:
        return _read_parameter(get_ssm_client(), parameter_name)
    except ConfigurationError:
        # Tracing is optional; a missing key only turns it off.
        logger.warning(
            "LangSmith API key parameter unavailable",
            extra={"parameter_name": parameter_name},
            exc_info=True,
        )
        return None


def _tracing_enabled() -> bool:
    return os.environ.get("LANGSMITH_TRACING", "").lower() == "true" and bool(
        os.environ.get("LANGSMITH_API_KEY")
    )


@lru_cache(maxsize=1)
def ensure_langsmith_configured() -> None:
    """Turn LangSmith tracing on when a key is available; runs once per process."""
    api_key = _langsmith_api_key()
    if not api_key:
        os.environ.pop("LANGSMITH_TRACING", None)
        logger.info("LangSmith tracing off for gateway calls")
        return
    os.environ.update(LANGSMITH_TRACING="true", LANGSMITH_API_KEY=api_key)
    os.environ.setdefault("LANGSMITH_PROJECT", LANGSMITH_PROJECT)
    logger.info("LangSmith tracing on", extra={"project": os.environ["LANGSMITH_PROJECT"]})


def flush_langsmith_traces() -> None:
    """Push pending gateway traces before the Lambda invocation ends."""
    if not _tracing_enabled():
        return
    try:
        get_cached_client().flush()
    except Exception:
        logger.warning("LangSmith trace flush failed", exc_info=True)


def build_azure_openai_client(
    config: ProviderConfig, token_provider: ManagedIdentityTokenProvider | None = None
) -> AzureOpenAI:
    # Retries are owned by the gateway's retry policy, not the SDK.
    return AzureOpenAI(
        azure_endpoint=config.endpoint,
        api_version=config.extra.get("api_version", DEFAULT_AZURE_OPENAI_API_VERSION),
        api_key=config.secret(),
        azure_ad_token_provider=token_provider,
        max_retries=0,
    )


def build_openai_compatible_client(config: ProviderConfig) -> OpenAI:
    base_url = config.endpoint or ""
    if config.identity is ProviderIdentity.OLLAMA and not base_url.endswith("/v1"):
        base_url = f"{base_url}/v1"
    # Managed-identity callers swap in a fresh bearer token per request.
    return OpenAI(
        base_url=base_url,
        api_key=config.secret() or OLLAMA_PLACEHOLDER_API_KEY,
        max_retries=0,
    )


def build_chat_completions_runnable(
    client: OpenAI, run_name: str
) -> Runnable[dict[str, Any], Any]:
    @traceable(run_type="llm", name=f"{run_name}.chat.completions.create")
    def _invoke_chat_completions(request_params: dict[str, Any]) -> Any:
        return client.chat.completions.create(**request_params)

    return RunnableLambda(_invoke_chat_completions).with_config({"run_name": run_name})


def _invoke_bedrock_converse(params: dict[str, Any]) -> AIMessage:
    timeout = params.get("timeout")
    botocore_config = Config(
        retries={"max_attempts": 1, "mode": "standard"},
        **({"read_timeout": timeout, "connect_timeout": timeout} if timeout else {}),
    )
    model = ChatBedrockConverse(
        model=params["model_id"],
        region_name=params["region"],
        max_tokens=params["max_tokens"],
        config=botocore_config,
        **({"temperature": params["temperature"]} if "temperature" in params else {}),
    )
    return model.invoke(params["messages"])


@lru_cache(maxsize=1)
def get_bedrock_runnable() -> Runnable[dict[str, Any], AIMessage]:
    return RunnableLambda(_invoke_bedrock_converse).with_config(
        {"run_name": "gateway_bedrock_converse"}
    )
