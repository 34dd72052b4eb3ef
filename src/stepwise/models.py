# models.py
# Data contracts for the agent loop: wire messages, tool calls, and the
# transcript. No business logic lives here, only schema and validation.

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from stepwise.errors import AgentError


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_CALL = "tool-call"
    TOOL_RESPONSE = "tool-response"


class Message(BaseModel):
    """One row of model input, produced by memory projection."""

    role: MessageRole
    content: str


class FunctionCall(BaseModel):
    name: str
    arguments: Any = Field(default_factory=dict, description="Unvalidated argument payload.")

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_json_string(cls, value: Any) -> Any:
        # Some backends send arguments as a JSON-encoded string.
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value


class ToolCall(BaseModel):
    id: str | None = None
    type: str = "function"
    function: FunctionCall


class ToolInfo(BaseModel):
    """Name, description and JSON-schema parameters of a registered tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def parameter_names(self) -> list[str]:
        return list(self.parameters.get("properties", {}))

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ModelResponse(BaseModel):
    text: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


class StepError(BaseModel):
    """Serializable form of an AgentError recorded on an action step."""

    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: AgentError) -> "StepError":
        return cls(kind=exc.kind, message=exc.message)


class SystemPromptStep(BaseModel):
    type: Literal["system_prompt"] = "system_prompt"
    text: str


class TaskStep(BaseModel):
    type: Literal["task"] = "task"
    text: str


class PlanningStep(BaseModel):
    type: Literal["planning"] = "planning"
    plan: str
    facts: str


class ActionStep(BaseModel):
    """Everything that happened during one iteration of the step loop."""

    type: Literal["action"] = "action"
    step: int = Field(..., description="0-based step index within the run.")
    agent_memory: list[Message] | None = None
    llm_output: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    observations: list[str] = Field(default_factory=list)
    error: StepError | None = None


class ToolCallStep(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    tool_call: ToolCall


Step = Annotated[
    Union[SystemPromptStep, TaskStep, PlanningStep, ActionStep, ToolCallStep],
    Field(discriminator="type"),
]

StepAdapter = TypeAdapter(Step)


# ---------------------------------------------------------------------------
# Parallel runs
# ---------------------------------------------------------------------------


class TaskResult(BaseModel):
    task: str
    answer: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
