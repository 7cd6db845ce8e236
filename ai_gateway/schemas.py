"""Pydantic schemas for gateway messages, responses and the HTTP API."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import (
    DEFAULT_OPERATION_NAME,
    CredentialMode,
    MessageRole,
    ProviderIdentity,
)


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: ProviderIdentity
    response_time_ms: int
    tokens_used: int | None = None
    tokens_estimated: bool = False
    model: str | None = None
    response_id: str | None = None


class AIResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    metadata: ResponseMetadata


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    prompt: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    max_tokens: int | None = Field(default=None, alias="maxTokens", ge=1)
    operation_name: str = Field(
        default=DEFAULT_OPERATION_NAME, alias="operationName", min_length=1, max_length=128
    )

    @model_validator(mode="after")
    def validate_prompt_source(self) -> "GenerateRequest":
        if self.prompt is None and not self.messages:
            raise ValueError("Either prompt or messages must be provided")
        if self.prompt is not None and self.messages:
            raise ValueError("prompt and messages are mutually exclusive")
        return self

    def to_messages(self) -> list[ChatMessage]:
        messages: list[ChatMessage] = []
        if self.system_prompt:
            messages.append(ChatMessage(role="system", content=self.system_prompt))
        if self.prompt is not None:
            messages.append(ChatMessage(role="user", content=self.prompt))
        else:
            messages.extend(self.messages)
        return messages


class GenerateResponse(BaseModel):
    content: str
    provider: ProviderIdentity
    response_time_ms: int = Field(serialization_alias="responseTimeMs")
    tokens_used: int | None = Field(default=None, serialization_alias="tokensUsed")
    tokens_estimated: bool = Field(default=False, serialization_alias="tokensEstimated")


class ProviderSummary(BaseModel):
    identity: ProviderIdentity
    model: str = Field(serialization_alias="deploymentOrModel")
    credential: CredentialMode
    endpoint: str | None = None
    primary: bool
