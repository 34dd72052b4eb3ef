import pytest

from stepwise.display import AgentDisplay
from stepwise.model_client import Model
from stepwise.models import FunctionCall, ModelResponse, ToolCall


class ScriptedModel(Model):
    """Replays canned responses in order and records every call it receives."""

    model_id = "scripted"

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def run(self, messages, tools=None, max_tokens=None, options=None):
        self.calls.append({"messages": messages, "tools": tools, "options": options})
        if not self.responses:
            raise AssertionError("ScriptedModel ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def text(value):
    return ModelResponse(text=value)


def call(name, arguments=None, call_id="call_1", content=None):
    return ModelResponse(
        text=content,
        tool_calls=[ToolCall(id=call_id, function=FunctionCall(name=name, arguments=arguments or {}))],
    )


def code(snippet, thought="Thought: let me compute this."):
    return ModelResponse(text=f"{thought}\nCode:\n```py\n{snippet}\n```")


@pytest.fixture
def quiet():
    return AgentDisplay(quiet=True)
