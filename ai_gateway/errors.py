"""Domain-level exceptions for the AI request gateway."""

from collections.abc import Mapping

from .constants import ErrorKind, ProviderIdentity


class ConfigurationError(ValueError):
    """Raised when provider or retry configuration is invalid or incomplete."""


class ProviderCallError(Exception):
    """A transport failure classified into one ErrorKind."""

    def __init__(
        self,
        kind: ErrorKind,
        provider: ProviderIdentity,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.kind is ErrorKind.RATE_LIMITED

    def describe(self) -> dict[str, object]:
        return {
            "kind": str(self.kind),
            "message": str(self),
            "status_code": self.status_code,
        }


class GatewayError(Exception):
    """Terminal failure surfaced to gateway callers."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        attempts: int = 0,
        provider_errors: Mapping[ProviderIdentity, ProviderCallError] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.attempts = attempts
        self.provider_errors: dict[ProviderIdentity, ProviderCallError] = dict(
            provider_errors or {}
        )
        self.cause = cause

    def diagnostic(self) -> dict[str, object]:
        return {
            "kind": str(self.kind),
            "message": str(self),
            "attempts": self.attempts,
            "providers": {
                str(provider): error.describe() for provider, error in self.provider_errors.items()
            },
        }


class InvalidRequestError(GatewayError):
    """Raised for caller misuse detected before any provider is called."""

    kind = ErrorKind.INVALID_REQUEST


class UnconfiguredProviderError(GatewayError):
    kind = ErrorKind.UNCONFIGURED_PROVIDER


class AllProvidersFailedError(GatewayError):
    kind = ErrorKind.ALL_PROVIDERS_FAILED


class GatewayCancelledError(GatewayError):
    """Raised when the caller cancels or the overall deadline passes."""

    kind = ErrorKind.CANCELLED
