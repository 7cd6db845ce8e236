"""Map SDK and transport exceptions onto the gateway ErrorKind taxonomy."""

import logging
from collections.abc import Mapping
from typing import Any

import httpx
import openai
from azure.core.exceptions import ClientAuthenticationError
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ai_gateway.constants import ErrorKind, ProviderIdentity
from ai_gateway.errors import ProviderCallError

logger = logging.getLogger(__name__)

BEDROCK_ERROR_CODES: dict[str, ErrorKind] = {
    "ThrottlingException": ErrorKind.RATE_LIMITED,
    "TooManyRequestsException": ErrorKind.RATE_LIMITED,
    "ServiceQuotaExceededException": ErrorKind.RATE_LIMITED,
    "ModelTimeoutException": ErrorKind.TIMEOUT,
    "InternalServerException": ErrorKind.SERVER_ERROR_5XX,
    "ServiceUnavailableException": ErrorKind.SERVER_ERROR_5XX,
    "ModelNotReadyException": ErrorKind.SERVER_ERROR_5XX,
    "AccessDeniedException": ErrorKind.AUTHENTICATION_FAILURE,
    "UnrecognizedClientException": ErrorKind.AUTHENTICATION_FAILURE,
    "ExpiredTokenException": ErrorKind.AUTHENTICATION_FAILURE,
    "ValidationException": ErrorKind.INVALID_REQUEST,
}


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION_FAILURE
    if status_code in (400, 413, 422):
        return ErrorKind.INVALID_REQUEST
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR_5XX
    return ErrorKind.UNKNOWN


def _retry_after(headers: Mapping[str, str] | None) -> float | None:
    if not headers:
        return None
    for name in ("retry-after-ms", "retry-after"):
        value = headers.get(name)
        if value is None:
            continue
        try:
            seconds = float(value)
        except ValueError:
            continue
        return seconds / 1000 if name == "retry-after-ms" else seconds
    return None


def classify_openai_error(exc: Exception, provider: ProviderIdentity) -> ProviderCallError:
    """Classify failures raised by the openai SDK, httpx or azure-identity."""
    status_code: int | None = None
    retry_after: float | None = None
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, openai.APITimeoutError | httpx.TimeoutException):
        kind = ErrorKind.TIMEOUT
    elif isinstance(exc, openai.APIConnectionError | httpx.TransportError):
        kind = ErrorKind.TRANSIENT_NETWORK
    elif isinstance(exc, openai.APIStatusError):
        status_code = exc.status_code
        kind = kind_for_status(status_code)
        retry_after = _retry_after(exc.response.headers)
    elif isinstance(exc, ClientAuthenticationError):
        kind = ErrorKind.AUTHENTICATION_FAILURE
    else:
        kind = ErrorKind.UNKNOWN
    return ProviderCallError(
        kind, provider, str(exc) or type(exc).__name__, status_code=status_code, retry_after=retry_after
    )


def classify_bedrock_error(exc: Exception, provider: ProviderIdentity) -> ProviderCallError:
    """Classify failures raised by botocore underneath ChatBedrockConverse."""
    status_code: int | None = None
    if isinstance(exc, ReadTimeoutError | ConnectTimeoutError):
        kind = ErrorKind.TIMEOUT
    elif isinstance(exc, EndpointConnectionError | ConnectionClosedError):
        kind = ErrorKind.TRANSIENT_NETWORK
    elif isinstance(exc, NoCredentialsError):
        kind = ErrorKind.AUTHENTICATION_FAILURE
    elif isinstance(exc, ClientError):
        response: dict[str, Any] = exc.response or {}
        code = response.get("Error", {}).get("Code", "")
        status_code = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        kind = BEDROCK_ERROR_CODES.get(code) or (
            kind_for_status(status_code) if status_code else ErrorKind.UNKNOWN
        )
    else:
        kind = ErrorKind.UNKNOWN
    return ProviderCallError(kind, provider, str(exc) or type(exc).__name__, status_code=status_code)


def log_classified(error: ProviderCallError, operation_name: str) -> None:
    if error.rate_limited:
        logger.warning(
            "Provider rate limit hit",
            extra={
                "provider": str(error.provider),
                "operation_name": operation_name,
                "retry_after": error.retry_after,
            },
        )
