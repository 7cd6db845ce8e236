import unittest

import httpx
import openai
from azure.core.exceptions import ClientAuthenticationError
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from ai_gateway.constants import ErrorKind, ProviderIdentity
from ai_gateway.providers.classification import (
    classify_bedrock_error,
    classify_openai_error,
    kind_for_status,
)

REQUEST = httpx.Request("POST", "https://example.openai.azure.com/chat/completions")


def _status_error(
    error_class: type[openai.APIStatusError], status_code: int, headers: dict[str, str] | None = None
) -> openai.APIStatusError:
    response = httpx.Response(status_code, request=REQUEST, headers=headers)
    return error_class(f"status {status_code}", response=response, body=None)


def _client_error(code: str, status_code: int) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} raised"},
            "ResponseMetadata": {"HTTPStatusCode": status_code},
        },
        "Converse",
    )


class KindForStatusTests(unittest.TestCase):
    def test_status_codes_map_to_error_kinds(self) -> None:
        expectations = {
            429: ErrorKind.RATE_LIMITED,
            408: ErrorKind.TIMEOUT,
            401: ErrorKind.AUTHENTICATION_FAILURE,
            403: ErrorKind.AUTHENTICATION_FAILURE,
            400: ErrorKind.INVALID_REQUEST,
            422: ErrorKind.INVALID_REQUEST,
            500: ErrorKind.SERVER_ERROR_5XX,
            503: ErrorKind.SERVER_ERROR_5XX,
            404: ErrorKind.UNKNOWN,
        }
        for status_code, kind in expectations.items():
            with self.subTest(status_code=status_code):
                self.assertEqual(kind_for_status(status_code), kind)


class ClassifyOpenAIErrorTests(unittest.TestCase):
    provider = ProviderIdentity.AZURE_OPENAI

    def test_rate_limit_carries_retry_after(self) -> None:
        error = classify_openai_error(
            _status_error(openai.RateLimitError, 429, {"retry-after": "7"}), self.provider
        )

        self.assertEqual(error.kind, ErrorKind.RATE_LIMITED)
        self.assertTrue(error.rate_limited)
        self.assertEqual(error.status_code, 429)
        self.assertEqual(error.retry_after, 7.0)
        self.assertEqual(error.provider, self.provider)

    def test_retry_after_ms_takes_precedence(self) -> None:
        error = classify_openai_error(
            _status_error(
                openai.RateLimitError, 429, {"retry-after-ms": "1500", "retry-after": "9"}
            ),
            self.provider,
        )

        self.assertEqual(error.retry_after, 1.5)

    def test_status_errors(self) -> None:
        cases = [
            (openai.AuthenticationError, 401, ErrorKind.AUTHENTICATION_FAILURE),
            (openai.BadRequestError, 400, ErrorKind.INVALID_REQUEST),
            (openai.InternalServerError, 502, ErrorKind.SERVER_ERROR_5XX),
        ]
        for error_class, status_code, kind in cases:
            with self.subTest(status_code=status_code):
                error = classify_openai_error(_status_error(error_class, status_code), self.provider)
                self.assertEqual(error.kind, kind)
                self.assertFalse(error.rate_limited)

    def test_timeouts_and_connection_errors(self) -> None:
        self.assertEqual(
            classify_openai_error(openai.APITimeoutError(request=REQUEST), self.provider).kind,
            ErrorKind.TIMEOUT,
        )
        self.assertEqual(
            classify_openai_error(openai.APIConnectionError(request=REQUEST), self.provider).kind,
            ErrorKind.TRANSIENT_NETWORK,
        )
        self.assertEqual(
            classify_openai_error(httpx.ConnectError("refused"), self.provider).kind,
            ErrorKind.TRANSIENT_NETWORK,
        )
        self.assertEqual(
            classify_openai_error(httpx.ReadTimeout("slow"), self.provider).kind,
            ErrorKind.TIMEOUT,
        )

    def test_credential_failure_is_authentication_failure(self) -> None:
        error = classify_openai_error(
            ClientAuthenticationError("managed identity unavailable"), self.provider
        )

        self.assertEqual(error.kind, ErrorKind.AUTHENTICATION_FAILURE)

    def test_unexpected_exception_is_unknown(self) -> None:
        error = classify_openai_error(KeyError("choices"), self.provider)

        self.assertEqual(error.kind, ErrorKind.UNKNOWN)


class ClassifyBedrockErrorTests(unittest.TestCase):
    provider = ProviderIdentity.BEDROCK

    def test_client_error_codes(self) -> None:
        cases = [
            ("ThrottlingException", 429, ErrorKind.RATE_LIMITED),
            ("AccessDeniedException", 403, ErrorKind.AUTHENTICATION_FAILURE),
            ("ValidationException", 400, ErrorKind.INVALID_REQUEST),
            ("ServiceUnavailableException", 503, ErrorKind.SERVER_ERROR_5XX),
            ("SomethingNewException", 500, ErrorKind.SERVER_ERROR_5XX),
        ]
        for code, status_code, kind in cases:
            with self.subTest(code=code):
                error = classify_bedrock_error(_client_error(code, status_code), self.provider)
                self.assertEqual(error.kind, kind)
                self.assertEqual(error.status_code, status_code)

    def test_network_failures(self) -> None:
        self.assertEqual(
            classify_bedrock_error(
                ReadTimeoutError(endpoint_url="https://bedrock-runtime"), self.provider
            ).kind,
            ErrorKind.TIMEOUT,
        )
        self.assertEqual(
            classify_bedrock_error(
                EndpointConnectionError(endpoint_url="https://bedrock-runtime"), self.provider
            ).kind,
            ErrorKind.TRANSIENT_NETWORK,
        )


if __name__ == "__main__":
    unittest.main()
