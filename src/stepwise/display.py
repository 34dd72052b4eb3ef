# display.py
# Terminal output for agent runs.
#
# Agents never format strings for the terminal themselves; they call named
# methods on the AgentDisplay they were given. Each display owns its own
# rich Console, so concurrent agents do not share output state.
#
# Colour language:
#   cyan    task and step banners
#   blue    model output and generated code
#   magenta tool calls and observations
#   yellow  planning
#   green   final answer
#   red     errors

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.text import Text


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _clip(value: str, max_len: int = 400) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


class AgentDisplay:
    """Renders agent events. quiet=True swallows everything."""

    def __init__(self, console: Console | None = None, quiet: bool = False) -> None:
        self.console = console or Console(quiet=quiet)
        if quiet:
            self.console.quiet = True

    # -- run lifecycle ------------------------------------------------------

    def task_received(self, task: str, agent_name: str) -> None:
        self.console.print()
        self.console.print(Rule(f"[cyan]{escape(agent_name)}[/cyan]", style="cyan"))
        self.console.print(
            Panel(
                escape(task),
                title=_label("NEW TASK", "cyan"),
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def step_start(self, step_number: int) -> None:
        self.console.print()
        self.console.print(Rule(f"[bold cyan]Step {step_number + 1}[/bold cyan]", style="dim cyan"))

    def plan(self, plan: str, facts: str) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[dim]{escape(facts)}[/dim]\n\n{escape(plan)}",
                title=_label("PLAN", "yellow"),
                border_style="yellow",
                padding=(0, 2),
            )
        )

    # -- model output -------------------------------------------------------

    def model_output(self, text: str) -> None:
        if text.strip():
            self.console.print(f"  [blue]Model[/blue]    [dim white]{escape(_clip(text))}[/dim white]")

    def code(self, code: str) -> None:
        self.console.print(
            Panel(
                Syntax(code, "python", theme="monokai", word_wrap=True),
                title=_label("EXECUTING CODE", "blue"),
                border_style="blue",
            )
        )

    def stream_chunk(self, chunk: str) -> None:
        self.console.print(chunk, end="", markup=False, highlight=False)

    # -- tools --------------------------------------------------------------

    def tool_call(self, name: str, arguments: Any) -> None:
        self.console.print(
            f"  [magenta]Action[/magenta]   [bold white]{escape(name)}[/bold white]"
            f"  [dim]{escape(_clip(json.dumps(arguments, default=str), 200))}[/dim]"
        )

    def observation(self, text: str) -> None:
        self.console.print(f"  [magenta]Observe[/magenta]  [white]{escape(_clip(text))}[/white]")

    def error(self, message: str) -> None:
        self.console.print(
            Panel(
                f"[bold red]{escape(message)}[/bold red]",
                title=_label("ERROR", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )

    def max_steps_reached(self, max_steps: int) -> None:
        self.console.print()
        self.console.print(
            _label("STOP", "red"),
            f"[red] Reached {max_steps} step(s) without a final answer.[/red]",
        )

    def final_answer(self, answer: str) -> None:
        self.console.print()
        self.console.print(
            Panel(
                escape(answer),
                title=_label("FINAL ANSWER", "green"),
                border_style="green",
                padding=(1, 2),
            )
        )
        self.console.print()
