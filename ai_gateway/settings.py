"""Provider configuration registry loaded from environment-style settings."""

import logging
import os
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .constants import (
    DEFAULT_AZURE_OPENAI_API_VERSION,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_BEDROCK_REGION,
    DEFAULT_ENDPOINTS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MODELS,
    DEFAULT_PRIMARY_PROVIDER,
    DEFAULT_RETRY_BASE_DELAY_MS,
    DEFAULT_RETRY_MAX_DELAY_MS,
    DEFAULT_RETRYABLE_ERROR_KINDS,
    DEFAULT_TIMEOUT_MS,
    PROVIDER_ENV_PREFIXES,
    CredentialMode,
    ErrorKind,
    OrchestratorName,
    ProviderIdentity,
)
from .errors import ConfigurationError, UnconfiguredProviderError

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "y", "on"}


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity: ProviderIdentity
    endpoint: str | None = None
    credential: CredentialMode = "api-key"
    deployment_or_model: str = Field(min_length=1)
    api_key: SecretStr | None = None
    api_key_parameter: str | None = None
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    extra: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def apply_default_endpoint(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("endpoint"):
            identity = data.get("identity")
            if identity in DEFAULT_ENDPOINTS:
                data = {**data, "endpoint": DEFAULT_ENDPOINTS[ProviderIdentity(identity)]}
        return data

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, endpoint: str | None) -> str | None:
        if endpoint is not None and not endpoint.startswith(("http://", "https://")):
            raise ValueError(f"endpoint must be an http(s) URL: {endpoint}")
        return endpoint.rstrip("/") if endpoint else endpoint

    @model_validator(mode="after")
    def validate_credentials(self) -> "ProviderConfig":
        if self.identity is ProviderIdentity.BEDROCK:
            if self.credential != "managed-identity":
                raise ValueError("bedrock only supports the managed-identity credential mode")
        elif self.endpoint is None:
            raise ValueError(f"endpoint is required for provider {self.identity}")

        if self.credential == "managed-identity":
            if self.api_key is not None or self.api_key_parameter is not None:
                raise ValueError(
                    f"provider {self.identity} uses managed-identity; an API key must not be set"
                )
        elif (
            self.api_key is None
            and self.api_key_parameter is None
            and self.identity is not ProviderIdentity.OLLAMA
        ):
            raise ValueError(f"provider {self.identity} uses api-key but no key is configured")
        return self

    def secret(self) -> str | None:
        return self.api_key.get_secret_value() if self.api_key else None


class RetryPolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY_MS / 1000, ge=0)
    max_delay: float = Field(default=DEFAULT_RETRY_MAX_DELAY_MS / 1000, ge=0)
    backoff_multiplier: float = Field(default=DEFAULT_BACKOFF_MULTIPLIER, gt=1)
    retryable_error_kinds: frozenset[ErrorKind] = DEFAULT_RETRYABLE_ERROR_KINDS

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryPolicyConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class GatewaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: ProviderIdentity
    fallbacks: tuple[ProviderIdentity, ...] = ()
    providers: dict[ProviderIdentity, ProviderConfig]
    retry: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_MS / 1000, gt=0)
    max_response_tokens: int | None = Field(default=None, ge=1)
    orchestrator: OrchestratorName = "sequential"

    @model_validator(mode="after")
    def validate_candidates(self) -> "GatewaySettings":
        missing = [p for p in (self.primary, *self.fallbacks) if p not in self.providers]
        if missing:
            raise ValueError(f"No configuration for providers: {', '.join(missing)}")
        return self


class ProviderRegistry:
    """Read-only view of configured providers in candidate order."""

    def __init__(
        self,
        configs: Mapping[ProviderIdentity, ProviderConfig],
        primary: ProviderIdentity,
        fallbacks: Iterable[ProviderIdentity] = (),
    ) -> None:
        self._configs = MappingProxyType(dict(configs))
        if primary not in self._configs:
            raise UnconfiguredProviderError(f"Primary provider {primary} is not configured")
        self._primary = primary
        ordered: list[ProviderIdentity] = []
        for identity in fallbacks:
            if identity == primary or identity in ordered:
                continue
            if identity not in self._configs:
                raise UnconfiguredProviderError(f"Fallback provider {identity} is not configured")
            ordered.append(identity)
        self._fallbacks = tuple(ordered)

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> "ProviderRegistry":
        return cls(settings.providers, settings.primary, settings.fallbacks)

    def resolve(self, identity: ProviderIdentity) -> ProviderConfig:
        config = self._configs.get(identity)
        if config is None:
            raise UnconfiguredProviderError(f"Provider {identity} is not configured")
        return config

    def primary(self) -> ProviderConfig:
        return self._configs[self._primary]

    def fallbacks(self) -> list[ProviderConfig]:
        return [self._configs[identity] for identity in self._fallbacks]

    def candidates(self) -> list[ProviderConfig]:
        return [self.primary(), *self.fallbacks()]

    def identities(self) -> list[ProviderIdentity]:
        return [config.identity for config in self.candidates()]


def _env(environ: Mapping[str, str], key: str, default: str | None = None) -> str | None:
    value = environ.get(key)
    if value is not None and value.strip():
        return value.strip()
    return default


def _env_number(environ: Mapping[str, str], key: str, default: float) -> float:
    value = _env(environ, key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from exc


def _parse_providers(raw: str | None, key: str) -> list[ProviderIdentity]:
    identities: list[ProviderIdentity] = []
    for item in (raw or "").split(","):
        name = item.strip().lower()
        if not name:
            continue
        try:
            identities.append(ProviderIdentity(name))
        except ValueError as exc:
            supported = ", ".join(p.value for p in ProviderIdentity)
            raise ConfigurationError(
                f"{key} contains unsupported provider {name!r}. Supported: {supported}"
            ) from exc
    return identities


def _parse_error_kinds(raw: str | None) -> frozenset[ErrorKind]:
    if raw is None:
        return DEFAULT_RETRYABLE_ERROR_KINDS
    kinds = set()
    for item in raw.split(","):
        name = item.strip()
        if not name:
            continue
        try:
            kinds.add(ErrorKind(name))
        except ValueError as exc:
            raise ConfigurationError(f"AI_RETRYABLE_ERRORS has unknown error kind {name!r}") from exc
    return frozenset(kinds)


def _provider_fields(
    identity: ProviderIdentity,
    environ: Mapping[str, str],
    resolve_secret: Callable[[str], str] | None,
) -> dict[str, Any]:
    prefix = PROVIDER_ENV_PREFIXES[identity]
    credential = _env(environ, f"{prefix}_CREDENTIAL")
    if credential is None:
        use_entra = (_env(environ, "USE_ENTRA_ID", "") or "").lower() in TRUTHY
        if identity is ProviderIdentity.BEDROCK or (
            identity is ProviderIdentity.AZURE_OPENAI and use_entra
        ):
            credential = "managed-identity"
        else:
            credential = "api-key"

    model = _env(environ, f"{prefix}_MODEL")
    extra: dict[str, str] = {}
    api_key = _env(environ, f"{prefix}_API_KEY")
    if identity is ProviderIdentity.AZURE_OPENAI:
        model = model or _env(environ, "AZURE_OPENAI_DEPLOYMENT_NAME")
        extra["api_version"] = _env(
            environ, "AZURE_OPENAI_API_VERSION", DEFAULT_AZURE_OPENAI_API_VERSION
        ) or DEFAULT_AZURE_OPENAI_API_VERSION
    elif identity is ProviderIdentity.GITHUB_AI:
        api_key = _env(environ, "GITHUB_TOKEN", api_key)
    elif identity is ProviderIdentity.BEDROCK:
        extra["region"] = _env(environ, "BEDROCK_REGION", DEFAULT_BEDROCK_REGION) or ""

    client_id = _env(environ, f"{prefix}_MANAGED_IDENTITY_CLIENT_ID") or _env(
        environ, "AZURE_CLIENT_ID"
    )
    if credential == "managed-identity" and client_id:
        extra["managed_identity_client_id"] = client_id

    fields: dict[str, Any] = {
        "identity": identity,
        "endpoint": _env(environ, f"{prefix}_ENDPOINT"),
        "credential": credential,
        "deployment_or_model": model or DEFAULT_MODELS[identity],
        "max_concurrency": int(
            _env_number(environ, f"{prefix}_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)
        ),
        "extra": extra,
    }
    api_key_parameter = _env(environ, f"{prefix}_API_KEY_PARAMETER")
    if credential == "api-key" and api_key is None and api_key_parameter:
        if resolve_secret is None:
            raise ConfigurationError(
                f"{prefix}_API_KEY_PARAMETER is set but no secret resolver is available"
            )
        api_key = resolve_secret(api_key_parameter)
        fields["api_key_parameter"] = api_key_parameter
    if api_key is not None:
        fields["api_key"] = api_key
    return fields


def load_gateway_settings(
    environ: Mapping[str, str] | None = None,
    *,
    resolve_secret: Callable[[str], str] | None = None,
) -> GatewaySettings:
    """Build validated gateway settings from environment-style key/value pairs.

    Only providers named by AI_PROVIDER and AI_FALLBACK_PROVIDERS are loaded.
    ``resolve_secret`` turns an SSM parameter name into its value and is only
    called when a ``<PREFIX>_API_KEY_PARAMETER`` key is present.
    """
    environ = os.environ if environ is None else environ

    primaries = _parse_providers(_env(environ, "AI_PROVIDER", DEFAULT_PRIMARY_PROVIDER.value), "AI_PROVIDER")
    if len(primaries) != 1:
        raise ConfigurationError("AI_PROVIDER must name exactly one provider")
    primary = primaries[0]
    fallbacks: list[ProviderIdentity] = []
    for identity in _parse_providers(_env(environ, "AI_FALLBACK_PROVIDERS"), "AI_FALLBACK_PROVIDERS"):
        if identity != primary and identity not in fallbacks:
            fallbacks.append(identity)

    try:
        providers = {
            identity: ProviderConfig(**_provider_fields(identity, environ, resolve_secret))
            for identity in (primary, *fallbacks)
        }
        retry = RetryPolicyConfig(
            max_retries=int(_env_number(environ, "AI_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
            base_delay=_env_number(environ, "AI_RETRY_BASE_DELAY_MS", DEFAULT_RETRY_BASE_DELAY_MS)
            / 1000,
            max_delay=_env_number(environ, "AI_RETRY_MAX_DELAY_MS", DEFAULT_RETRY_MAX_DELAY_MS)
            / 1000,
            backoff_multiplier=_env_number(
                environ, "AI_RETRY_BACKOFF_MULTIPLIER", DEFAULT_BACKOFF_MULTIPLIER
            ),
            retryable_error_kinds=_parse_error_kinds(_env(environ, "AI_RETRYABLE_ERRORS")),
        )
        max_response_tokens = _env(environ, "AI_MAX_RESPONSE_TOKENS")
        settings = GatewaySettings(
            primary=primary,
            fallbacks=tuple(fallbacks),
            providers=providers,
            retry=retry,
            timeout_seconds=_env_number(environ, "AI_TIMEOUT", DEFAULT_TIMEOUT_MS) / 1000,
            max_response_tokens=int(max_response_tokens) if max_response_tokens else None,
            orchestrator=(_env(environ, "AI_ORCHESTRATOR", "sequential") or "sequential").lower(),
        )
    except (ValidationError, ValueError) as exc:
        if isinstance(exc, ConfigurationError):
            raise
        raise ConfigurationError(f"Invalid gateway configuration: {exc}") from exc

    logger.info(
        "Gateway configuration loaded",
        extra={
            "primary_provider": str(primary),
            "fallback_providers": [str(p) for p in fallbacks],
            "max_retries": retry.max_retries,
            "orchestrator": settings.orchestrator,
        },
    )
    return settings
