# parallel.py
# Run independent tasks concurrently, one fresh agent per task.

from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from stepwise.agents import MultiStepAgent
from stepwise.models import TaskResult

AgentBuilder = Callable[[], MultiStepAgent]


def _run_one(builder: AgentBuilder, task: str) -> TaskResult:
    try:
        agent = builder()
        answer = agent.run(task, stream=False, reset=True)
    except Exception as exc:
        return TaskResult(task=task, error=f"{type(exc).__name__}: {exc}")
    return TaskResult(task=task, answer=answer)


def run_tasks_parallel(
    builder: AgentBuilder,
    tasks: list[str],
    max_workers: int | None = None,
) -> list[TaskResult]:
    """
    Run every task on its own agent, built by `builder`, in a thread pool.

    Agents are never shared between workers. A failure in one task becomes
    that task's `error` and does not affect the others. Results come back
    in the order of `tasks`.
    """
    if not tasks:
        return []
    with ThreadPoolExecutor(max_workers=max_workers or len(tasks)) as pool:
        futures = [pool.submit(_run_one, builder, task) for task in tasks]
        return [future.result() for future in futures]
