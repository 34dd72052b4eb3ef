# agents.py
# The step loop.
#
# An agent owns its transcript (`logs`) and drives the model one ActionStep
# at a time until something produces an answer or the step budget runs out.
# The model never calls tools itself: the agent parses its output, dispatches
# through the registry, and records what happened on the step.
#
# Control flow of run():
#   reset/seed transcript → TaskStep → optional PlanningStep
#   → ActionStep loop → best-effort answer if the budget runs out
#
# All terminal output goes through AgentDisplay.

import json
import re
from pathlib import Path
from typing import Iterable

from pydantic import Field

from stepwise import config
from stepwise.display import AgentDisplay
from stepwise.errors import (
    AgentError,
    AgentExecutionError,
    AgentGenerationError,
    AgentMaxStepsError,
    AgentParsingError,
    FinalAnswerSignal,
    InterpreterError,
)
from stepwise.interpreter import LocalPythonInterpreter
from stepwise.memory import write_memory
from stepwise.model_client import Model
from stepwise.models import (
    ActionStep,
    FunctionCall,
    Message,
    MessageRole,
    ModelResponse,
    PlanningStep,
    Step,
    StepAdapter,
    StepError,
    SystemPromptStep,
    TaskStep,
    ToolCall,
    ToolInfo,
)
from stepwise.prompts import (
    CODE_SYSTEM_PROMPT,
    SYSTEM_PROMPT_FACTS,
    SYSTEM_PROMPT_PLAN,
    TOOL_CALLING_SYSTEM_PROMPT,
    format_prompt_with_managed_agents,
    format_prompt_with_time,
    format_prompt_with_tools,
    managed_agents_description,
    user_prompt_facts,
    user_prompt_plan,
)
from stepwise.tools import FinalAnswerTool, Tool, ToolParams, ToolRegistry

NO_ANSWER = "Max steps reached without final answer"

FINAL_ANSWER_PREAMBLE = (
    "An agent tried to answer a user query but it got stuck and failed to do so. "
    "You are tasked with providing an answer instead. Here is the agent's memory:"
)

CODE_BLOB_PATTERN = re.compile(r"```(?:py|python)?\n([\s\S]*?)\n```")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def truncate_content(content: str, limit: int = config.OBSERVATION_CHAR_LIMIT) -> str:
    if len(content) <= limit:
        return content
    return (
        content[:limit]
        + f"\n....This content has been truncated due to the {limit} character limit....."
    )


def parse_code_blobs(text: str) -> str:
    """
    Extract fenced python code from model output. Multiple blocks are joined
    with a blank line. Raises AgentParsingError when there is none.
    """
    matches = [m.strip() for m in CODE_BLOB_PATTERN.findall(text)]
    if matches:
        return "\n\n".join(matches)

    if "final" in text and "answer" in text:
        raise AgentParsingError(
            "The code blob is invalid. It seems like you're trying to return the final answer. Use:\n"
            "Code:\n"
            "```py\n"
            'final_answer("YOUR FINAL ANSWER HERE")\n'
            "```"
        )
    raise AgentParsingError(
        "The code blob is invalid. Make sure to include code with the correct pattern, for instance:\n"
        "Thoughts: Your thoughts\n"
        "Code:\n"
        "```py\n"
        "# Your python code here\n"
        "```"
    )


def save_transcript(steps: Iterable[Step], path: str | Path = config.TRANSCRIPT_PATH) -> None:
    """Append each step to `path` as pretty-printed JSON."""
    with open(path, "a", encoding="utf-8") as fh:
        for step in steps:
            fh.write(step.model_dump_json(indent=2))
            fh.write("\n")


def load_transcript(path: str | Path) -> list[Step]:
    text = Path(path).read_text(encoding="utf-8")
    decoder = json.JSONDecoder()
    steps: list[Step] = []
    index = 0
    while True:
        while index < len(text) and text[index].isspace():
            index += 1
        if index >= len(text):
            break
        obj, index = decoder.raw_decode(text, index)
        steps.append(StepAdapter.validate_python(obj))
    return steps


# ---------------------------------------------------------------------------
# Base agent
# ---------------------------------------------------------------------------


class MultiStepAgent:
    """
    Shared run loop. Subclasses implement step().

    Example:
        agent = FunctionCallingAgent(model=OpenAIServerModel(), tools=[DuckDuckGoSearchTool()])
        answer = agent.run("Who won the 2022 world cup?")
    """

    default_system_prompt = TOOL_CALLING_SYSTEM_PROMPT

    def __init__(
        self,
        model: Model,
        tools: Iterable[Tool] = (),
        system_prompt: str | None = None,
        managed_agents: Iterable["MultiStepAgent"] = (),
        name: str | None = None,
        description: str = "A multi-step agent that can solve tasks using a series of tools",
        max_steps: int = config.MAX_STEPS,
        planning: bool = False,
        max_consecutive_errors: int | None = None,
        display: AgentDisplay | None = None,
    ) -> None:
        self.model = model
        self.name = name or type(self).__name__
        self.description = description
        self.max_steps = max_steps
        self.planning = planning
        self.max_consecutive_errors = max_consecutive_errors
        self.display = display or AgentDisplay()

        self.registry = ToolRegistry(tools)
        if "final_answer" not in self.registry:
            self.registry.register(FinalAnswerTool())
        self.managed_agents = {agent.name: agent for agent in managed_agents}
        for agent in self.managed_agents.values():
            self.registry.register(ManagedAgentTool(agent))

        self.system_prompt = self.initialize_system_prompt(system_prompt or self.default_system_prompt)
        self.logs: list[Step] = []
        self.step_number = 0
        self.task = ""
        self._stream = False

    def initialize_system_prompt(self, template: str) -> str:
        infos = [t.tool_info for t in self.registry if not isinstance(t, ManagedAgentTool)]
        prompt = format_prompt_with_tools(infos, template)
        prompt = format_prompt_with_managed_agents(prompt, self.managed_agent_descriptions())
        return format_prompt_with_time(prompt)

    def managed_agent_descriptions(self) -> dict[str, str]:
        return {name: agent.description for name, agent in self.managed_agents.items()}

    def write_memory(self, summary_mode: bool = False) -> list[Message]:
        return write_memory(self.logs, summary_mode=summary_mode)

    # -- model access -------------------------------------------------------

    def call_model(
        self,
        messages: list[Message],
        tools: list[ToolInfo] | None = None,
        options: dict | None = None,
    ) -> ModelResponse:
        if self._stream:
            return self.model.run_stream(
                messages, self.display.stream_chunk, tools=tools, options=options
            )
        return self.model.run(messages, tools=tools, options=options)

    # -- run loop -----------------------------------------------------------

    def reset(self) -> None:
        self.logs = [SystemPromptStep(text=self.system_prompt)]
        self.step_number = 0

    def run(self, task: str, stream: bool = False, reset: bool = True) -> str:
        """
        Solve `task` and return the answer.

        reset=False keeps the transcript and step counter of the previous
        run, so the model sees earlier work. AgentGenerationError from the
        model propagates; every other failure is recorded and retried.
        """
        self.task = task
        self._stream = stream

        if reset:
            self.reset()
        elif not self.logs:
            self.logs.append(SystemPromptStep(text=self.system_prompt))
        else:
            self.logs[0] = SystemPromptStep(text=self.system_prompt)
        self.logs.append(TaskStep(text=task))
        self.display.task_received(task, self.name)

        if self.planning and self.step_number == 0:
            self.planning_step(task)

        answer = self.run_steps()
        if answer is None:
            answer = self.provide_final_answer(task)

        self.display.final_answer(answer)
        return answer

    def run_steps(self) -> str | None:
        streak = 0
        last_error: str | None = None

        while self.step_number < self.max_steps:
            self.display.step_start(self.step_number)
            action = ActionStep(step=self.step_number)
            answer = self.step(action)
            self.logs.append(action)
            self.step_number += 1
            if answer is not None:
                return answer

            if action.error is None:
                streak, last_error = 0, None
            elif action.error.message == last_error:
                streak += 1
            else:
                streak, last_error = 1, action.error.message

            if self.max_consecutive_errors and streak >= self.max_consecutive_errors:
                self.display.error(
                    f"Stopping after {streak} consecutive identical errors: {last_error}"
                )
                return None

        exhausted = AgentMaxStepsError(f"Reached max steps ({self.max_steps}) without a final answer.")
        last = self.logs[-1]
        if isinstance(last, ActionStep) and last.error is None:
            last.error = StepError.from_exception(exhausted)
        self.display.max_steps_reached(self.max_steps)
        return None

    def step(self, action: ActionStep) -> str | None:
        """Run one ActionStep. Returns the answer if this step produced one."""
        raise NotImplementedError

    def record_error(self, action: ActionStep, exc: AgentError) -> None:
        """Record `exc` on the step. Non-retryable errors end the run after being logged."""
        action.error = StepError.from_exception(exc)
        self.display.error(exc.message)
        if not exc.retryable:
            self.logs.append(action)
            raise exc

    # -- planning and fallback ----------------------------------------------

    def planning_step(self, task: str) -> None:
        facts_messages = [
            Message(role=MessageRole.SYSTEM, content=SYSTEM_PROMPT_FACTS),
            Message(role=MessageRole.USER, content=user_prompt_facts(task)),
        ]
        facts = self.call_model(facts_messages).text or ""

        tool_descriptions = json.dumps(
            [info.model_dump() for info in self.registry.tool_infos()]
        )
        plan_messages = [
            Message(role=MessageRole.SYSTEM, content=SYSTEM_PROMPT_PLAN),
            Message(
                role=MessageRole.USER,
                content=user_prompt_plan(
                    task,
                    tool_descriptions,
                    managed_agents_description(self.managed_agent_descriptions()),
                    facts,
                ),
            ),
        ]
        plan = self.call_model(plan_messages, options={"stop": ["Observation:"]}).text or ""

        step = PlanningStep(
            plan=f"Here is the plan of action that I will follow for the task: \n{plan}",
            facts=f"Here are the facts that I know so far: \n{facts}",
        )
        self.logs.append(step)
        self.display.plan(step.plan, step.facts)

    def provide_final_answer(self, task: str) -> str:
        """Ask the model to answer from the transcript after the loop gave up."""
        messages = [Message(role=MessageRole.SYSTEM, content=FINAL_ANSWER_PREAMBLE)]
        messages.extend(self.write_memory(summary_mode=True)[1:])
        messages.append(
            Message(
                role=MessageRole.USER,
                content=(
                    "Based on the above, please provide an answer to the following user request: "
                    f"\n```\n{task}"
                ),
            )
        )
        try:
            response = self.call_model(messages)
        except AgentGenerationError as exc:
            self.display.error(exc.message)
            return NO_ANSWER
        return response.text or NO_ANSWER


# ---------------------------------------------------------------------------
# Tool-calling agent
# ---------------------------------------------------------------------------


class FunctionCallingAgent(MultiStepAgent):
    """Uses the model's native tool-calling. Plain text with no calls is the answer."""

    def step(self, action: ActionStep) -> str | None:
        memory = self.write_memory()
        action.agent_memory = memory
        response = self.call_model(
            memory, tools=self.registry.tool_infos(), options={"stop": ["Observation:"]}
        )
        action.llm_output = response.text
        action.tool_calls = list(response.tool_calls)
        if response.text and not self._stream:
            self.display.model_output(response.text)

        if not response.tool_calls:
            if response.text and response.text.strip():
                return response.text
            self.record_error(action, AgentParsingError("Model returned neither text nor tool calls."))
            return None

        for call in response.tool_calls:
            name = call.function.name
            self.display.tool_call(name, call.function.arguments)
            try:
                result = self.registry.call(call.function)
            except AgentError as exc:
                action.observations.append(exc.message)
                self.record_error(action, exc)
                continue

            if name == "final_answer":
                return result
            observation = f"Observation from {name}: {truncate_content(result)}"
            action.observations.append(observation)
            self.display.observation(observation)
        return None


# ---------------------------------------------------------------------------
# Code agent
# ---------------------------------------------------------------------------


class CodeAgent(MultiStepAgent):
    """
    Asks the model for a python snippet each step and runs it in the local
    interpreter. Tools are callable from the snippet as functions; calling
    final_answer(...) ends the run.
    """

    default_system_prompt = CODE_SYSTEM_PROMPT

    def __init__(self, model: Model, *args, max_operations: int = config.MAX_OPERATIONS, **kwargs) -> None:
        super().__init__(model, *args, **kwargs)
        self.interpreter = LocalPythonInterpreter(self.registry, max_operations=max_operations)

    def reset(self) -> None:
        super().reset()
        self.interpreter.reset()

    def step(self, action: ActionStep) -> str | None:
        memory = self.write_memory()
        action.agent_memory = memory
        response = self.call_model(memory, options={"stop": ["Observation:", "<end_code>"]})
        text = response.text or ""
        action.llm_output = text
        if not self._stream:
            self.display.model_output(text)

        try:
            code = parse_code_blobs(text)
        except AgentParsingError as exc:
            self.record_error(action, exc)
            return None

        action.tool_calls = [
            ToolCall(function=FunctionCall(name="python_interpreter", arguments={"code": code}))
        ]
        self.display.code(code)

        try:
            result, logs = self.interpreter.forward(code)
        except FinalAnswerSignal as signal:
            return signal.answer
        except InterpreterError as exc:
            self.record_error(action, AgentExecutionError(exc.message))
            return None

        parts = []
        if logs:
            parts.append(f"Execution logs:\n{logs}")
        parts.append(f"Last output from code snippet:\n{result}")
        observation = truncate_content("\n".join(parts))
        action.observations.append(observation)
        self.display.observation(observation)
        return None


# ---------------------------------------------------------------------------
# Managed agents
# ---------------------------------------------------------------------------


class ManagedAgentParams(ToolParams):
    request: str = Field(
        ...,
        description="Your request to the team member. Be detailed: give all the context it needs.",
    )


class ManagedAgentTool(Tool):
    """Exposes an agent to another agent as a tool taking one `request`."""

    params = ManagedAgentParams

    def __init__(self, agent: MultiStepAgent) -> None:
        self.agent = agent
        self.name = agent.name
        self.description = agent.description

    def forward(self, params: ManagedAgentParams) -> str:
        return self.agent.run(params.request, stream=False, reset=True)
