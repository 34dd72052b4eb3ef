from datetime import datetime

import pytest

from conftest import ScriptedModel, call, code, text
from stepwise.agents import (
    FINAL_ANSWER_PREAMBLE,
    NO_ANSWER,
    CodeAgent,
    FunctionCallingAgent,
    load_transcript,
    parse_code_blobs,
    save_transcript,
    truncate_content,
)
from stepwise.errors import AgentGenerationError, AgentParsingError
from stepwise.models import (
    ActionStep,
    ModelResponse,
    PlanningStep,
    SystemPromptStep,
    TaskStep,
)
from stepwise.prompts import (
    format_prompt_with_managed_agents,
    format_prompt_with_time,
    format_prompt_with_tools,
    managed_agents_description,
)
from stepwise.tools import Tool, ToolParams


class ShoutParams(ToolParams):
    text: str


class ShoutTool(Tool):
    name = "shout"
    description = "Upper-cases its input."
    params = ShoutParams

    def forward(self, params):
        return params.text.upper()


def make_agent(responses, agent_cls=FunctionCallingAgent, display=None, **kwargs):
    model = ScriptedModel(responses)
    agent = agent_cls(model=model, display=display, **kwargs)
    return agent, model


# ---------------------------------------------------------------------------
# Function-calling agent
# ---------------------------------------------------------------------------


def test_plain_text_is_the_answer(quiet):
    agent, model = make_agent([text("Paris")], display=quiet)

    assert agent.run("Capital of France?") == "Paris"
    assert len(model.calls) == 1
    assert isinstance(agent.logs[0], SystemPromptStep)
    assert agent.logs[1] == TaskStep(text="Capital of France?")
    assert isinstance(agent.logs[2], ActionStep)
    assert agent.logs[2].llm_output == "Paris"


def test_tools_and_stop_sequence_are_sent(quiet):
    agent, model = make_agent([text("ok")], display=quiet, tools=[ShoutTool()])
    agent.run("anything")

    sent = model.calls[0]
    assert [info.name for info in sent["tools"]] == ["shout", "final_answer"]
    assert sent["options"] == {"stop": ["Observation:"]}
    assert sent["messages"][0].content == agent.system_prompt
    assert sent["messages"][1].content == "New Task: anything"


def test_tool_observation_then_final_answer(quiet):
    agent, _ = make_agent(
        [call("shout", {"text": "hi"}), call("final_answer", {"answer": "HI"}, call_id="call_2")],
        display=quiet,
        tools=[ShoutTool()],
    )

    assert agent.run("Shout hi") == "HI"
    first = agent.logs[2]
    assert first.observations == ["Observation from shout: HI"]
    assert first.error is None
    assert agent.step_number == 2


def test_final_answer_tool_round_trip(quiet):
    agent, _ = make_agent([call("final_answer", {"answer": "X"})], display=quiet)
    assert agent.run("Say X") == "X"


def test_unknown_tool_is_recorded_and_run_continues(quiet):
    agent, model = make_agent([call("nope"), text("recovered")], display=quiet)

    assert agent.run("task") == "recovered"
    failed = agent.logs[2]
    assert failed.error.kind == "execution"
    assert failed.error.message == "Tool 'nope' not found"
    assert failed.observations == ["Tool 'nope' not found"]

    # The second call sees the error fed back with the retry hint.
    last_message = model.calls[1]["messages"][-1].content
    assert last_message.startswith("Error: Tool 'nope' not found")


def test_bad_tool_arguments_are_parsing_errors(quiet):
    agent, _ = make_agent([call("shout", {}), text("done")], display=quiet, tools=[ShoutTool()])
    agent.run("task")
    assert agent.logs[2].error.kind == "parsing"


def test_empty_response_is_an_error(quiet):
    agent, _ = make_agent([ModelResponse(), text("done")], display=quiet)

    assert agent.run("task") == "done"
    assert agent.logs[2].error.message == "Model returned neither text nor tool calls."


def test_generation_error_propagates(quiet):
    agent, _ = make_agent([AgentGenerationError("gateway down")], display=quiet)
    with pytest.raises(AgentGenerationError, match="gateway down") as exc_info:
        agent.run("task")
    assert exc_info.value.retryable is False


def test_max_steps_asks_for_best_effort_answer(quiet):
    agent, model = make_agent(
        [call("nope"), call("nope", call_id="call_2"), text("best effort")],
        display=quiet,
        max_steps=2,
    )

    assert agent.run("task") == "best effort"
    assert agent.step_number == 2
    final_messages = model.calls[-1]["messages"]
    assert final_messages[0].content == FINAL_ANSWER_PREAMBLE
    assert final_messages[-1].content.endswith("\n```\ntask")


def test_max_steps_marks_last_step(quiet):
    agent, model = make_agent(
        [call("shout", {"text": "a"}), text("fallback")],
        display=quiet,
        tools=[ShoutTool()],
        max_steps=1,
    )

    assert agent.run("task") == "fallback"
    last = agent.logs[-1]
    assert last.observations == ["Observation from shout: A"]
    assert last.error.kind == "max_steps"
    assert "Reached max steps (1)" in model.calls[-1]["messages"][-2].content


def test_max_steps_without_fallback_answer(quiet):
    agent, _ = make_agent(
        [call("nope"), AgentGenerationError("gateway down")],
        display=quiet,
        max_steps=1,
    )
    assert agent.run("task") == NO_ANSWER


def test_consecutive_identical_errors_stop_the_loop(quiet):
    agent, model = make_agent(
        [call("nope"), call("nope", call_id="call_2"), text("gave up")],
        display=quiet,
        max_steps=10,
        max_consecutive_errors=2,
    )

    assert agent.run("task") == "gave up"
    assert agent.step_number == 2
    assert len(model.calls) == 3


def test_reset_false_keeps_transcript(quiet):
    agent, model = make_agent([text("a"), text("b")], display=quiet)
    agent.run("first")
    agent.run("second", reset=False)

    tasks = [step.text for step in agent.logs if isinstance(step, TaskStep)]
    assert tasks == ["first", "second"]
    assert agent.logs[-1].step == 1
    contents = [m.content for m in model.calls[1]["messages"]]
    assert "New Task: first" in contents


def test_reset_starts_a_fresh_transcript(quiet):
    agent, _ = make_agent([text("a"), text("b")], display=quiet)
    agent.run("first")
    agent.run("second")

    assert len(agent.logs) == 3
    assert isinstance(agent.logs[0], SystemPromptStep)
    assert agent.logs[1].text == "second"


def test_streaming_uses_run_stream(quiet):
    agent, _ = make_agent([text("streamed")], display=quiet)
    assert agent.run("task", stream=True) == "streamed"


def test_planning_step(quiet):
    agent, model = make_agent(
        [text("- fact one"), text("1. do it"), text("answer")],
        display=quiet,
        planning=True,
    )

    assert agent.run("task") == "answer"
    plan = agent.logs[2]
    assert isinstance(plan, PlanningStep)
    assert plan.plan == "Here is the plan of action that I will follow for the task: \n1. do it"
    assert plan.facts == "Here are the facts that I know so far: \n- fact one"
    assert model.calls[1]["options"] == {"stop": ["Observation:"]}


# ---------------------------------------------------------------------------
# Managed agents
# ---------------------------------------------------------------------------


def test_managed_agent_is_called_like_a_tool(quiet):
    helper = FunctionCallingAgent(
        model=ScriptedModel([text("found it")]),
        name="researcher",
        description="Looks things up.",
        display=quiet,
    )
    manager, _ = make_agent(
        [call("researcher", {"request": "look it up"}), text("done")],
        display=quiet,
        managed_agents=[helper],
    )

    assert manager.run("task") == "done"
    assert manager.logs[2].observations == ["Observation from researcher: found it"]
    assert "researcher: Looks things up." in manager.system_prompt
    assert helper.task == "look it up"


def test_managed_agent_generation_error_is_fatal(quiet):
    helper = FunctionCallingAgent(
        model=ScriptedModel([AgentGenerationError("helper gateway down")]),
        name="researcher",
        display=quiet,
    )
    manager, _ = make_agent(
        [call("researcher", {"request": "look it up"}), text("never reached")],
        display=quiet,
        managed_agents=[helper],
    )

    with pytest.raises(AgentGenerationError, match="helper gateway down"):
        manager.run("task")
    assert manager.logs[-1].error.kind == "generation"


# ---------------------------------------------------------------------------
# Code agent
# ---------------------------------------------------------------------------


def test_code_agent_observation_then_answer(quiet):
    agent, model = make_agent(
        [code("x = 2 + 2\nprint(x)"), code("final_answer(x)")],
        agent_cls=CodeAgent,
        display=quiet,
    )

    assert agent.run("Add two and two") == "4"
    first = agent.logs[2]
    assert first.observations == ["Execution logs:\n4\nLast output from code snippet:\n4"]
    assert first.tool_calls[0].function.name == "python_interpreter"
    assert first.tool_calls[0].function.arguments == {"code": "x = 2 + 2\nprint(x)"}
    assert model.calls[0]["tools"] is None
    assert model.calls[0]["options"] == {"stop": ["Observation:", "<end_code>"]}


def test_code_agent_calls_tools_from_code(quiet):
    agent, _ = make_agent(
        [code('loud = shout(text="hi")\nfinal_answer(loud)')],
        agent_cls=CodeAgent,
        display=quiet,
        tools=[ShoutTool()],
    )
    assert agent.run("Shout") == "HI"


def test_code_agent_final_answer_keyword(quiet):
    agent, _ = make_agent([code('final_answer(answer="X")')], agent_cls=CodeAgent, display=quiet)
    assert agent.run("Say X") == "X"


def test_code_agent_non_retryable_tool_error_ends_run(quiet):
    class QuotaTool(ShoutTool):
        name = "quota"

        def forward(self, params):
            raise AgentGenerationError("quota exhausted")

    agent, _ = make_agent(
        [code('quota(text="a")'), code('final_answer("never")')],
        agent_cls=CodeAgent,
        display=quiet,
        tools=[QuotaTool()],
    )
    with pytest.raises(AgentGenerationError, match="quota exhausted"):
        agent.run("task")


def test_code_agent_missing_code_block(quiet):
    agent, _ = make_agent(
        [text("I think the answer is obvious."), code('final_answer("done")')],
        agent_cls=CodeAgent,
        display=quiet,
    )

    assert agent.run("task") == "done"
    assert agent.logs[2].error.kind == "parsing"


def test_code_agent_execution_error(quiet):
    agent, model = make_agent(
        [code("missing_name + 1"), code('final_answer("ok")')],
        agent_cls=CodeAgent,
        display=quiet,
    )

    assert agent.run("task") == "ok"
    assert agent.logs[2].error.kind == "execution"
    assert model.calls[1]["messages"][-1].content.startswith("Error: ")


def test_code_agent_state_persists_within_run(quiet):
    agent, _ = make_agent(
        [code("x = 5"), code("final_answer(x * 2)")],
        agent_cls=CodeAgent,
        display=quiet,
    )
    assert agent.run("task") == "10"


def test_code_agent_reset_clears_state(quiet):
    agent, _ = make_agent(
        [code('final_answer("first")')],
        agent_cls=CodeAgent,
        display=quiet,
    )
    agent.run("one")
    agent.interpreter.environment.set("leftover", 1)
    agent.reset()
    assert "leftover" not in agent.interpreter.environment


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_parse_code_blobs_joins_blocks():
    output = "Code:\n```py\na = 1\n```\nmore\n```python\nb = 2\n```"
    assert parse_code_blobs(output) == "a = 1\n\nb = 2"


def test_parse_code_blobs_hints_final_answer():
    with pytest.raises(AgentParsingError, match="trying to return the final answer"):
        parse_code_blobs("the final answer is 4")


def test_parse_code_blobs_generic_error():
    with pytest.raises(AgentParsingError, match="Make sure to include code"):
        parse_code_blobs("no code here")


def test_truncate_content():
    assert truncate_content("short", limit=10) == "short"
    truncated = truncate_content("x" * 20, limit=10)
    assert truncated.startswith("x" * 10 + "\n")
    assert "truncated due to the 10 character limit" in truncated


def test_transcript_round_trip(quiet, tmp_path):
    agent, _ = make_agent([call("nope"), text("done")], display=quiet)
    agent.run("task")
    path = tmp_path / "logs.txt"

    save_transcript(agent.logs, path)
    save_transcript(agent.logs[:1], path)

    loaded = load_transcript(path)
    assert loaded[: len(agent.logs)] == agent.logs
    assert len(loaded) == len(agent.logs) + 1


# ---------------------------------------------------------------------------
# Prompt templating
# ---------------------------------------------------------------------------


def test_prompt_placeholders(quiet):
    agent, _ = make_agent([], display=quiet, tools=[ShoutTool()])
    infos = agent.registry.tool_infos()

    prompt = format_prompt_with_tools(infos, "Tools: {{tool_names}}\n{{tool_descriptions}}")
    assert prompt.startswith("Tools: shout, final_answer\n")
    assert "shout: Upper-cases its input." in prompt

    assert managed_agents_description({}) == ""
    assert format_prompt_with_managed_agents("[{{managed_agents_descriptions}}]", {}) == "[]"

    now = datetime(2024, 1, 2, 3, 4, 5)
    assert format_prompt_with_time("at {{current_time}}", now) == "at 2024-01-02 03:04:05"


def test_system_prompt_is_fully_rendered(quiet):
    agent, _ = make_agent([], agent_cls=CodeAgent, display=quiet, tools=[ShoutTool()])
    assert "{{" not in agent.system_prompt
    assert "shout" in agent.system_prompt
