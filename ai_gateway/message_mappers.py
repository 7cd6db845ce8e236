"""Conversion helpers between gateway messages and provider-specific formats."""

from collections.abc import Sequence

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from .schemas import AIResponse, ChatMessage


def create_messages(system_prompt: str, user_prompt: str) -> list[ChatMessage]:
    return [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=user_prompt),
    ]


def extract_content(response: AIResponse | str) -> str:
    if isinstance(response, str):
        return response
    return response.content


def build_openai_messages(messages: Sequence[ChatMessage]) -> list[dict[str, str]]:
    """Convert gateway messages to Chat Completions message dicts."""
    return [{"role": message.role, "content": message.content} for message in messages]


def build_bedrock_messages(
    messages: Sequence[ChatMessage],
) -> list[SystemMessage | HumanMessage | AIMessage]:
    """Convert gateway messages to LangChain message format for Bedrock."""
    lc_messages: list[SystemMessage | HumanMessage | AIMessage] = []
    for message in messages:
        if message.role == "system":
            lc_messages.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            lc_messages.append(AIMessage(content=message.content))
        else:
            lc_messages.append(HumanMessage(content=message.content))
    return lc_messages


def bedrock_content_text(content: str | list) -> str:
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block) for block in content
    )
