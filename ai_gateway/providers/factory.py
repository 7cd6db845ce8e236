"""Build one transport per configured provider."""

from typing import assert_never

from ai_gateway.constants import ProviderIdentity
from ai_gateway.credentials import build_token_provider
from ai_gateway.infra.runtime import (
    build_azure_openai_client,
    build_chat_completions_runnable,
    build_openai_compatible_client,
    get_bedrock_runnable,
)
from ai_gateway.settings import ProviderConfig, ProviderRegistry

from .base import ProviderTransport
from .bedrock_provider import BedrockTransport
from .openai_provider import OpenAIChatTransport


def build_transport(config: ProviderConfig) -> ProviderTransport:
    managed = config.credential == "managed-identity"
    match config.identity:
        case ProviderIdentity.AZURE_OPENAI:
            token_provider = build_token_provider(config) if managed else None
            return OpenAIChatTransport(
                config.identity,
                build_azure_openai_client(config, token_provider),
                build_chat_completions_runnable,
            )
        case ProviderIdentity.AZURE_AI_STUDIO | ProviderIdentity.GITHUB_AI | ProviderIdentity.OLLAMA:
            return OpenAIChatTransport(
                config.identity,
                build_openai_compatible_client(config),
                build_chat_completions_runnable,
                bearer_token_provider=build_token_provider(config) if managed else None,
            )
        case ProviderIdentity.BEDROCK:
            return BedrockTransport(get_bedrock_runnable)
        case _:
            assert_never(config.identity)


def build_transports(registry: ProviderRegistry) -> dict[ProviderIdentity, ProviderTransport]:
    return {config.identity: build_transport(config) for config in registry.candidates()}
