import unittest

from ai_gateway.constants import ErrorKind, ProviderIdentity
from ai_gateway.errors import InvalidRequestError, ProviderCallError
from ai_gateway.providers.base import RequestContext, build_ai_response
from ai_gateway.schemas import AIResponse, ChatMessage
from ai_gateway.services.gateway_service import AIGateway, build_gateway, validate_messages
from ai_gateway.settings import GatewaySettings, ProviderConfig, RetryPolicyConfig


class RecordingTransport:
    def __init__(self, identity: ProviderIdentity, fail_with: ErrorKind | None = None) -> None:
        self.identity = identity
        self.fail_with = fail_with
        self.contexts: list[RequestContext] = []

    def call(self, config: ProviderConfig, context: RequestContext, timeout: float) -> AIResponse:
        self.contexts.append(context)
        if self.fail_with is not None:
            raise ProviderCallError(self.fail_with, self.identity, "boom")
        return build_ai_response(
            provider=self.identity, content="Hello", duration_ms=3, tokens_used=None
        )


class GatewayServiceTests(unittest.TestCase):
    def _gateway(
        self, *, fallback_model: str = "llama3.1", max_response_tokens: int | None = None
    ) -> AIGateway:
        settings = GatewaySettings(
            primary=ProviderIdentity.AZURE_OPENAI,
            fallbacks=(ProviderIdentity.OLLAMA,),
            providers={
                ProviderIdentity.AZURE_OPENAI: ProviderConfig(
                    identity=ProviderIdentity.AZURE_OPENAI,
                    endpoint="https://example.openai.azure.com",
                    api_key="azure-key",
                    deployment_or_model="gpt-4o-mini",
                ),
                ProviderIdentity.OLLAMA: ProviderConfig(
                    identity=ProviderIdentity.OLLAMA, deployment_or_model=fallback_model
                ),
            },
            retry=RetryPolicyConfig(max_retries=2),
            max_response_tokens=max_response_tokens,
        )
        self.primary = RecordingTransport(ProviderIdentity.AZURE_OPENAI)
        self.fallback = RecordingTransport(ProviderIdentity.OLLAMA)
        return build_gateway(
            settings,
            transports={
                ProviderIdentity.AZURE_OPENAI: self.primary,
                ProviderIdentity.OLLAMA: self.fallback,
            },
            sleep=lambda _: None,
        )

    def test_default_token_budget_is_share_of_primary_window(self) -> None:
        gateway = self._gateway()

        response = gateway.submit([ChatMessage(role="user", content="hi")])

        self.assertEqual(self.primary.contexts[0].max_tokens, 16384)
        self.assertEqual(response.metadata.tokens_used, 2)
        self.assertTrue(response.metadata.tokens_estimated)

    def test_token_budget_is_clamped_to_smallest_candidate_window(self) -> None:
        gateway = self._gateway(fallback_model="llama2")

        gateway.submit([ChatMessage(role="user", content="hi")], max_tokens=100_000)

        self.assertEqual(self.primary.contexts[0].max_tokens, 4096)

    def test_configured_response_tokens_override_default(self) -> None:
        gateway = self._gateway(max_response_tokens=512)

        gateway.submit([ChatMessage(role="user", content="hi")], operation_name="tagging")

        context = self.primary.contexts[0]
        self.assertEqual(context.max_tokens, 512)
        self.assertEqual(context.operation_name, "tagging")

    def test_non_positive_max_tokens_is_invalid(self) -> None:
        gateway = self._gateway()

        with self.assertRaises(InvalidRequestError):
            gateway.submit([ChatMessage(role="user", content="hi")], max_tokens=0)

        self.assertEqual(self.primary.contexts, [])

    def test_create_messages_and_extract_content(self) -> None:
        messages = AIGateway.create_messages("You are terse.", "Summarize this.")

        self.assertEqual([m.role for m in messages], ["system", "user"])
        response = self._gateway().submit(messages)
        self.assertEqual(AIGateway.extract_content(response), "Hello")
        self.assertEqual(AIGateway.extract_content("plain"), "plain")

    def test_connection_test_makes_a_single_small_attempt(self) -> None:
        gateway = self._gateway()

        self.assertTrue(gateway.test_connection())

        self.assertEqual(len(self.primary.contexts), 1)
        self.assertEqual(self.primary.contexts[0].max_tokens, 10)
        self.assertEqual(self.primary.contexts[0].operation_name, "connection_test")

    def test_connection_test_reports_failure_without_retrying(self) -> None:
        gateway = self._gateway()
        self.fallback.fail_with = ErrorKind.TRANSIENT_NETWORK

        self.assertFalse(gateway.test_connection(ProviderIdentity.OLLAMA))

        self.assertEqual(len(self.fallback.contexts), 1)
        self.assertEqual(self.primary.contexts, [])
        metrics = gateway.metrics_snapshot(ProviderIdentity.OLLAMA)
        self.assertEqual(metrics.failed_calls, 1)

    def test_provider_summaries_mark_primary(self) -> None:
        summaries = self._gateway().provider_summaries()

        self.assertEqual(
            [(s.identity, s.primary) for s in summaries],
            [(ProviderIdentity.AZURE_OPENAI, True), (ProviderIdentity.OLLAMA, False)],
        )
        self.assertEqual(summaries[1].endpoint, "http://localhost:11434")

    def test_performance_summary_includes_metrics_and_configuration(self) -> None:
        gateway = self._gateway()
        gateway.submit([ChatMessage(role="user", content="hi")])

        summary = gateway.performance_summary()

        primary_metrics = summary["metrics"]["azure-openai"]
        self.assertEqual(primary_metrics["total_calls"], 1)
        self.assertEqual(primary_metrics["success_rate"], 1.0)
        self.assertEqual(summary["configuration"]["maxRetries"], 2)
        self.assertEqual(
            [p["deploymentOrModel"] for p in summary["configuration"]["providers"]],
            ["gpt-4o-mini", "llama3.1"],
        )


class ValidateMessagesTests(unittest.TestCase):
    def test_rejects_empty_conversation(self) -> None:
        with self.assertRaisesRegex(InvalidRequestError, "at least one message"):
            validate_messages([])

    def test_rejects_system_message_after_first_position(self) -> None:
        with self.assertRaisesRegex(InvalidRequestError, "must be the first message"):
            validate_messages(
                [
                    ChatMessage(role="user", content="hi"),
                    ChatMessage(role="system", content="late"),
                ]
            )

    def test_rejects_multiple_system_messages(self) -> None:
        with self.assertRaisesRegex(InvalidRequestError, "at most one system message"):
            validate_messages(
                [
                    ChatMessage(role="system", content="a"),
                    ChatMessage(role="system", content="b"),
                ]
            )

    def test_accepts_multi_turn_conversation(self) -> None:
        messages = [
            ChatMessage(role="system", content="s"),
            ChatMessage(role="user", content="u"),
            ChatMessage(role="assistant", content="a"),
            ChatMessage(role="user", content="u2"),
        ]

        self.assertEqual(validate_messages(messages), tuple(messages))


if __name__ == "__main__":
    unittest.main()
