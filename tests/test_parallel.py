import threading
import time

from conftest import ScriptedModel, text
from stepwise.agents import FunctionCallingAgent
from stepwise.display import AgentDisplay
from stepwise.errors import AgentGenerationError
from stepwise.parallel import run_tasks_parallel


def echo_builder(finished=None, delays=None):
    """Each agent answers with its own task, so ordering is observable."""

    class EchoModel(ScriptedModel):
        def run(self, messages, tools=None, max_tokens=None, options=None):
            task = messages[1].content.removeprefix("New Task: ")
            if task == "fail":
                raise AgentGenerationError("gateway down")
            time.sleep((delays or {}).get(task, 0))
            if finished is not None:
                finished.append(task)
            return text(f"answer to {task}")

    return FunctionCallingAgent(model=EchoModel([]), display=AgentDisplay(quiet=True))


def test_results_follow_input_order():
    tasks = [f"task {i}" for i in range(8)]
    # Earlier tasks sleep longer, so they finish last.
    delays = {task: 0.03 * (8 - i) for i, task in enumerate(tasks)}
    finished = []

    results = run_tasks_parallel(lambda: echo_builder(finished, delays), tasks, max_workers=8)

    assert finished[-1] == "task 0"
    assert [r.task for r in results] == tasks
    assert [r.answer for r in results] == [f"answer to {t}" for t in tasks]
    assert all(r.ok for r in results)


def test_failure_is_isolated():
    results = run_tasks_parallel(echo_builder, ["a", "fail", "b"])

    assert results[0].answer == "answer to a"
    assert results[1].error == "AgentGenerationError: gateway down"
    assert results[1].answer is None
    assert not results[1].ok
    assert results[2].answer == "answer to b"


def test_builder_failure_is_reported():
    def broken_builder():
        raise ValueError("no model configured")

    (result,) = run_tasks_parallel(broken_builder, ["task"])
    assert result.error == "ValueError: no model configured"


def test_each_task_gets_its_own_agent():
    built = []
    lock = threading.Lock()

    def builder():
        agent = echo_builder()
        with lock:
            built.append(agent)
        return agent

    run_tasks_parallel(builder, ["x", "y", "z"])
    assert len({id(agent) for agent in built}) == 3


def test_no_tasks():
    assert run_tasks_parallel(echo_builder, []) == []
