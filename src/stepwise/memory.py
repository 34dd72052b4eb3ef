# memory.py
# Projects the step transcript into the message list sent to the model.

import json

from stepwise.models import (
    ActionStep,
    Message,
    MessageRole,
    PlanningStep,
    Step,
    SystemPromptStep,
    TaskStep,
    ToolCallStep,
)

RETRY_HINT = (
    "\nNow let's retry: take care not to repeat previous errors! "
    "If you have retried several times, try a completely different approach.\n"
)


def write_memory(steps: list[Step], summary_mode: bool = False) -> list[Message]:
    """
    Turn transcript steps into model input, in transcript order.

    summary_mode drops planning facts and raw model output; it is used when
    another model is asked to answer on the agent's behalf.
    """
    memory: list[Message] = []
    for step in steps:
        match step:
            case SystemPromptStep(text=text):
                memory.append(Message(role=MessageRole.SYSTEM, content=text))
            case TaskStep(text=text):
                memory.append(Message(role=MessageRole.USER, content=f"New Task: {text}"))
            case PlanningStep(plan=plan, facts=facts):
                memory.append(Message(role=MessageRole.ASSISTANT, content=f"[PLAN]:\n{plan}"))
                if not summary_mode:
                    memory.append(Message(role=MessageRole.ASSISTANT, content=f"[FACTS]:\n{facts}"))
            case ActionStep():
                memory.extend(_action_messages(step, summary_mode))
            case ToolCallStep():
                pass
            case _:
                raise TypeError(f"Unknown step type: {type(step).__name__}")
    return memory


def _action_messages(step: ActionStep, summary_mode: bool) -> list[Message]:
    messages = []
    if step.llm_output is not None and not summary_mode:
        messages.append(Message(role=MessageRole.ASSISTANT, content=step.llm_output))

    for call in step.tool_calls:
        messages.append(
            Message(
                role=MessageRole.ASSISTANT,
                content=json.dumps(call.model_dump(mode="json"), indent=2),
            )
        )

    if step.observations:
        if step.tool_calls and all(call.id is not None for call in step.tool_calls):
            for call, observation in zip(step.tool_calls, step.observations):
                messages.append(
                    Message(
                        role=MessageRole.USER,
                        content=f"Call id: {call.id}\nObservation: {observation}",
                    )
                )
        else:
            messages.append(
                Message(
                    role=MessageRole.USER,
                    content="Observations: " + "\n".join(step.observations),
                )
            )

    if step.error is not None:
        messages.append(
            Message(role=MessageRole.USER, content=f"Error: {step.error.message}{RETRY_HINT}")
        )
    return messages
