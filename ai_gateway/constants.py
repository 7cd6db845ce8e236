"""Shared constants and enumerations for the AI request gateway."""

from enum import StrEnum
from typing import Literal


class ProviderIdentity(StrEnum):
    AZURE_OPENAI = "azure-openai"
    AZURE_AI_STUDIO = "azure-ai-studio"
    GITHUB_AI = "github-ai"
    OLLAMA = "ollama"
    BEDROCK = "bedrock"


class ErrorKind(StrEnum):
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"
    TRANSIENT_NETWORK = "TransientNetwork"
    SERVER_ERROR_5XX = "ServerError5xx"
    AUTHENTICATION_FAILURE = "AuthenticationFailure"
    INVALID_REQUEST = "InvalidRequest"
    UNKNOWN = "Unknown"
    # Gateway-level kinds, never produced by a transport.
    UNCONFIGURED_PROVIDER = "UnconfiguredProvider"
    ALL_PROVIDERS_FAILED = "AllProvidersFailed"
    CANCELLED = "Cancelled"


CredentialMode = Literal["api-key", "managed-identity"]
OrchestratorName = Literal["sequential", "langgraph"]
MessageRole = Literal["system", "user", "assistant"]

DEFAULT_RETRYABLE_ERROR_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.TIMEOUT,
        ErrorKind.TRANSIENT_NETWORK,
        ErrorKind.SERVER_ERROR_5XX,
    }
)

# Environment prefixes per provider, e.g. AZURE_OPENAI_ENDPOINT.
PROVIDER_ENV_PREFIXES: dict[ProviderIdentity, str] = {
    ProviderIdentity.AZURE_OPENAI: "AZURE_OPENAI",
    ProviderIdentity.AZURE_AI_STUDIO: "AZURE_AI",
    ProviderIdentity.GITHUB_AI: "GITHUB",
    ProviderIdentity.OLLAMA: "OLLAMA",
    ProviderIdentity.BEDROCK: "BEDROCK",
}
DEFAULT_ENDPOINTS: dict[ProviderIdentity, str] = {
    ProviderIdentity.OLLAMA: "http://localhost:11434",
    ProviderIdentity.GITHUB_AI: "https://models.github.ai/inference",
}
DEFAULT_MODELS: dict[ProviderIdentity, str] = {
    ProviderIdentity.AZURE_OPENAI: "gpt-4o-mini",
    ProviderIdentity.AZURE_AI_STUDIO: "gpt-4o-mini",
    ProviderIdentity.GITHUB_AI: "openai/gpt-4.1-mini",
    ProviderIdentity.OLLAMA: "llama3.1",
    ProviderIdentity.BEDROCK: "global.anthropic.claude-haiku-4-5-20251001-v1:0",
}

DEFAULT_PRIMARY_PROVIDER = ProviderIdentity.AZURE_OPENAI
DEFAULT_AZURE_OPENAI_API_VERSION = "2024-02-15-preview"
DEFAULT_BEDROCK_REGION = "ap-northeast-1"
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_TIMEOUT_MS = 60_000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_MS = 1_000
DEFAULT_RETRY_MAX_DELAY_MS = 30_000
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_TEMPERATURE = 0.7
DEFAULT_OPERATION_NAME = "ai_request"
RESPONSE_TOKEN_SHARE = 0.2
CHARS_PER_TOKEN_ESTIMATE = 4

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"
TOKEN_REFRESH_MARGIN_SECONDS = 300
DEGRADED_AFTER_CONSECUTIVE_FAILURES = 3

LANGSMITH_PROJECT = "ai-request-gateway"
