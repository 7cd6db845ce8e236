"""Model context-window registry used to size response token budgets."""

from .constants import RESPONSE_TOKEN_SHARE, ProviderIdentity

# Matched as lowercase substrings of the deployment or model id, first hit wins,
# so more specific fragments come first.
MODEL_TOKEN_LIMITS: tuple[tuple[str, int], ...] = (
    ("gpt-4.1", 1_047_576),
    ("gpt-4o-mini", 128_000),
    ("gpt-4o", 128_000),
    ("gpt-4-turbo", 128_000),
    ("gpt-4-32k", 32_768),
    ("gpt-4", 8_192),
    ("gpt-35-turbo-16k", 16_384),
    ("gpt-35-turbo", 4_096),
    ("gpt-3.5-turbo", 16_385),
    ("o4-mini", 200_000),
    ("o3", 200_000),
    ("claude", 200_000),
    ("llama3", 131_072),
    ("llama2", 4_096),
    ("deepseek", 131_072),
    ("mistral", 32_768),
    ("phi-4", 16_384),
)

PROVIDER_DEFAULT_TOKEN_LIMITS: dict[ProviderIdentity, int] = {
    ProviderIdentity.AZURE_OPENAI: 128_000,
    ProviderIdentity.AZURE_AI_STUDIO: 128_000,
    ProviderIdentity.GITHUB_AI: 128_000,
    ProviderIdentity.OLLAMA: 131_072,
    ProviderIdentity.BEDROCK: 200_000,
}
FALLBACK_TOKEN_LIMIT = 4_000
MAX_DEFAULT_RESPONSE_TOKENS = 16_384


def model_token_limit(model: str, provider: ProviderIdentity | None = None) -> int:
    name = model.lower()
    for fragment, limit in MODEL_TOKEN_LIMITS:
        if fragment in name:
            return limit
    if provider is not None:
        return PROVIDER_DEFAULT_TOKEN_LIMITS.get(provider, FALLBACK_TOKEN_LIMIT)
    return FALLBACK_TOKEN_LIMIT


def default_response_tokens(model: str, provider: ProviderIdentity | None = None) -> int:
    """Reserve a fixed share of the context window for the response."""
    share = int(model_token_limit(model, provider) * RESPONSE_TOKEN_SHARE)
    return min(share, MAX_DEFAULT_RESPONSE_TOKENS)
