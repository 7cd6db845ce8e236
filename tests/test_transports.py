import unittest
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
from botocore.exceptions import ClientError
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from ai_gateway.constants import ErrorKind, ProviderIdentity
from ai_gateway.errors import ProviderCallError
from ai_gateway.providers.base import RequestContext
from ai_gateway.providers.bedrock_provider import BedrockTransport
from ai_gateway.providers.openai_provider import OpenAIChatTransport
from ai_gateway.schemas import ChatMessage
from ai_gateway.settings import ProviderConfig


def _completion(content: str | None, total_tokens: int | None = 21) -> SimpleNamespace:
    return SimpleNamespace(
        id="chatcmpl-1",
        model="gpt-4o-mini",
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens) if total_tokens is not None else None,
    )


class OpenAIChatTransportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = ProviderConfig(
            identity=ProviderIdentity.AZURE_OPENAI,
            endpoint="https://example.openai.azure.com",
            api_key="azure-key",
            deployment_or_model="gpt-4o-mini",
        )
        self.context = RequestContext(
            messages=(
                ChatMessage(role="system", content="Be brief."),
                ChatMessage(role="user", content="Hello"),
            ),
            max_tokens=50,
            operation_name="greeting",
            attempts_so_far=1,
        )
        self.client = Mock()
        self.runnable = Mock()
        self.get_runnable = Mock(return_value=self.runnable)

    def _transport(self, **kwargs: object) -> OpenAIChatTransport:
        return OpenAIChatTransport(
            ProviderIdentity.AZURE_OPENAI, self.client, self.get_runnable, **kwargs
        )

    def test_call_sends_chat_completion_request(self) -> None:
        self.runnable.invoke.return_value = _completion("Hi there")

        response = self._transport().call(self.config, self.context, timeout=12.5)

        self.get_runnable.assert_called_once_with(self.client, "gateway_azure-openai")
        params = self.runnable.invoke.call_args.args[0]
        self.assertEqual(params["model"], "gpt-4o-mini")
        self.assertEqual(
            params["messages"],
            [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Hello"}],
        )
        self.assertEqual(params["max_tokens"], 50)
        self.assertEqual(params["timeout"], 12.5)
        run_config = self.runnable.invoke.call_args.kwargs["config"]
        self.assertEqual(run_config["run_name"], "greeting")
        self.assertEqual(run_config["metadata"]["attempt"], 1)

        self.assertEqual(response.content, "Hi there")
        self.assertEqual(response.metadata.provider, ProviderIdentity.AZURE_OPENAI)
        self.assertEqual(response.metadata.tokens_used, 21)
        self.assertFalse(response.metadata.tokens_estimated)
        self.assertEqual(response.metadata.response_id, "chatcmpl-1")

    def test_missing_usage_is_estimated(self) -> None:
        self.runnable.invoke.return_value = _completion("abcdefghij", total_tokens=None)

        response = self._transport().call(self.config, self.context, timeout=5)

        self.assertEqual(response.metadata.tokens_used, 3)
        self.assertTrue(response.metadata.tokens_estimated)

    def test_bearer_token_is_applied_per_call(self) -> None:
        call_client = Mock()
        self.client.with_options.return_value = call_client
        self.runnable.invoke.return_value = _completion("ok")

        self._transport(bearer_token_provider=lambda: "entra-token").call(
            self.config, self.context, timeout=5
        )

        self.client.with_options.assert_called_once_with(api_key="entra-token")
        self.get_runnable.assert_called_once_with(call_client, "gateway_azure-openai")

    def test_sdk_errors_are_classified(self) -> None:
        request = httpx.Request("POST", "https://example.openai.azure.com/chat/completions")
        self.runnable.invoke.side_effect = openai.RateLimitError(
            "slow down",
            response=httpx.Response(429, request=request, headers={"retry-after": "2"}),
            body=None,
        )

        with self.assertRaises(ProviderCallError) as ctx:
            self._transport().call(self.config, self.context, timeout=5)

        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.retry_after, 2.0)

    def test_completion_without_choices_is_unknown_error(self) -> None:
        self.runnable.invoke.return_value = SimpleNamespace(choices=[], usage=None)

        with self.assertRaises(ProviderCallError) as ctx:
            self._transport().call(self.config, self.context, timeout=5)

        self.assertEqual(ctx.exception.kind, ErrorKind.UNKNOWN)


class BedrockTransportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = ProviderConfig(
            identity=ProviderIdentity.BEDROCK,
            credential="managed-identity",
            deployment_or_model="anthropic.claude-3-haiku",
            extra={"region": "us-east-1"},
        )
        self.context = RequestContext(
            messages=(
                ChatMessage(role="system", content="Be brief."),
                ChatMessage(role="user", content="Hello"),
            ),
            operation_name="greeting",
        )
        self.runnable = Mock()
        self.transport = BedrockTransport(lambda: self.runnable)

    def test_call_maps_messages_and_usage(self) -> None:
        self.runnable.invoke.return_value = AIMessage(
            content=[{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
            usage_metadata={"input_tokens": 4, "output_tokens": 3, "total_tokens": 7},
            response_metadata={"ResponseMetadata": {"RequestId": "req-1"}},
        )

        response = self.transport.call(self.config, self.context, timeout=9)

        params = self.runnable.invoke.call_args.args[0]
        self.assertEqual(params["model_id"], "anthropic.claude-3-haiku")
        self.assertEqual(params["region"], "us-east-1")
        self.assertEqual(params["timeout"], 9)
        # No caller budget: a share of the 200k claude window, capped.
        self.assertEqual(params["max_tokens"], 16384)
        self.assertIsInstance(params["messages"][0], SystemMessage)
        self.assertIsInstance(params["messages"][1], HumanMessage)
        self.assertEqual(response.content, "Hi there")
        self.assertEqual(response.metadata.tokens_used, 7)
        self.assertEqual(response.metadata.response_id, "req-1")

    def test_throttling_is_rate_limited(self) -> None:
        self.runnable.invoke.side_effect = ClientError(
            {
                "Error": {"Code": "ThrottlingException", "Message": "Too many requests"},
                "ResponseMetadata": {"HTTPStatusCode": 429},
            },
            "Converse",
        )

        with self.assertRaises(ProviderCallError) as ctx:
            self.transport.call(self.config, self.context, timeout=9)

        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.provider, ProviderIdentity.BEDROCK)


if __name__ == "__main__":
    unittest.main()
