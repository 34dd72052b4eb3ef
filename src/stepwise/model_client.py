# model_client.py
# Model gateway: turns a message list into a ModelResponse.
#
# Agents only ever talk to the Model interface. OpenAIServerModel works
# against any OpenAI-compatible endpoint (OpenAI, OpenRouter, a local
# server) through the official openai SDK.

import os
from typing import Any, Callable

import openai
from openai import OpenAI

from stepwise import config
from stepwise.errors import AgentGenerationError
from stepwise.models import FunctionCall, Message, MessageRole, ModelResponse, ToolCall, ToolInfo

StreamCallback = Callable[[str], None]


class Model:
    """Interface every model gateway implements."""

    model_id: str = ""

    def run(
        self,
        messages: list[Message],
        tools: list[ToolInfo] | None = None,
        max_tokens: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        raise NotImplementedError

    def run_stream(
        self,
        messages: list[Message],
        callback: StreamCallback,
        tools: list[ToolInfo] | None = None,
        max_tokens: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        """Backends without streaming deliver the whole text as one chunk."""
        response = self.run(messages, tools=tools, max_tokens=max_tokens, options=options)
        if response.text:
            callback(response.text)
        return response


# ---------------------------------------------------------------------------
# OpenAI-compatible server
# ---------------------------------------------------------------------------


ROLE_MAP = {
    MessageRole.SYSTEM: "system",
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.TOOL_CALL: "assistant",
    MessageRole.TOOL_RESPONSE: "user",
}


def to_openai_messages(messages: list[Message]) -> list[dict[str, str]]:
    return [{"role": ROLE_MAP[m.role], "content": m.content} for m in messages]


class OpenAIServerModel(Model):
    """
    Chat-completions client.

    Example:
        model = OpenAIServerModel(model_id="gpt-4o-mini")
        response = model.run([Message(role=MessageRole.USER, content="Hi")])
    """

    def __init__(
        self,
        model_id: str = config.MODEL_ID,
        base_url: str = config.BASE_URL,
        api_key: str | None = None,
        temperature: float = config.TEMPERATURE,
        max_tokens: int = config.MAX_TOKENS,
        client: OpenAI | None = None,
    ) -> None:
        self.model_id = model_id
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or OpenAI(
            base_url=base_url,
            api_key=api_key or os.getenv(config.API_KEY_ENV),
        )

    def _request(
        self,
        messages: list[Message],
        tools: list[ToolInfo] | None,
        max_tokens: int | None,
        options: dict[str, Any] | None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": self.model_id,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if tools:
            request["tools"] = [info.to_openai() for info in tools]
            request["tool_choice"] = "required"
        stop = (options or {}).get("stop")
        if stop:
            request["stop"] = list(stop)
        return request

    def run(
        self,
        messages: list[Message],
        tools: list[ToolInfo] | None = None,
        max_tokens: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        request = self._request(messages, tools, max_tokens, options)
        try:
            response = self._client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            raise AgentGenerationError(f"Failed to get response from {self.model_id}: {exc}") from exc

        if not response.choices:
            raise AgentGenerationError(f"{self.model_id} returned no choices")
        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=call.id,
                type=call.type or "function",
                function=FunctionCall(name=call.function.name, arguments=call.function.arguments),
            )
            for call in (message.tool_calls or [])
        ]
        return ModelResponse(text=message.content, tool_calls=tool_calls)

    def run_stream(
        self,
        messages: list[Message],
        callback: StreamCallback,
        tools: list[ToolInfo] | None = None,
        max_tokens: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> ModelResponse:
        request = self._request(messages, tools, max_tokens, options)
        text_parts: list[str] = []
        # index -> {"id", "name", "arguments"}; tool-call fields arrive in pieces
        partial_calls: dict[int, dict[str, str]] = {}

        try:
            stream = self._client.chat.completions.create(**request, stream=True)
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    text_parts.append(delta.content)
                    callback(delta.content)
                for call in delta.tool_calls or []:
                    slot = partial_calls.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                    if call.id:
                        slot["id"] = call.id
                    if call.function is not None:
                        slot["name"] += call.function.name or ""
                        slot["arguments"] += call.function.arguments or ""
        except openai.OpenAIError as exc:
            raise AgentGenerationError(f"Failed to stream response from {self.model_id}: {exc}") from exc

        tool_calls = [
            ToolCall(
                id=slot["id"] or None,
                function=FunctionCall(name=slot["name"], arguments=slot["arguments"] or {}),
            )
            for _, slot in sorted(partial_calls.items())
        ]
        return ModelResponse(text="".join(text_parts) or None, tool_calls=tool_calls)
