# run.py
# Entry point. Argument parsing and wiring only, no logic lives here.
#
# Any OpenAI-compatible endpoint works: point --base-url at OpenRouter or a
# local server and pass the matching --model-id.

import argparse
from contextlib import nullcontext
from pathlib import Path

from stepwise import config
from stepwise.agents import CodeAgent, FunctionCallingAgent, MultiStepAgent, save_transcript
from stepwise.model_client import OpenAIServerModel
from stepwise.sandbox import sandbox
from stepwise.tools import TOOL_FACTORIES

AGENT_TYPES = {
    "function-calling": FunctionCallingAgent,
    "code": CodeAgent,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stepwise", description="Run a tool-using agent interactively.")
    parser.add_argument("--agent", choices=sorted(AGENT_TYPES), default="function-calling")
    parser.add_argument(
        "--tools",
        default="duckduckgo,visit-website",
        help=f"Comma-separated tools to enable: {', '.join(TOOL_FACTORIES)}",
    )
    parser.add_argument("--model-id", default=config.MODEL_ID)
    parser.add_argument("--base-url", default=config.BASE_URL)
    parser.add_argument("--api-key", default=None, help=f"Defaults to ${config.API_KEY_ENV}")
    parser.add_argument("--max-steps", type=int, default=config.MAX_STEPS)
    parser.add_argument("--stream", action="store_true", help="Stream model output as it arrives")
    parser.add_argument("--planning", action="store_true", help="Draft facts and a plan before acting")
    parser.add_argument("--transcript", default=config.TRANSCRIPT_PATH, help="File the transcript is appended to")
    parser.add_argument(
        "--sandbox",
        action="store_true",
        help="Run inside a temporary working directory (created under $SANDBOX_DIR if set)",
    )
    return parser


def parse_tools(spec: str) -> list:
    names = [name.strip() for name in spec.split(",") if name.strip()]
    unknown = [name for name in names if name not in TOOL_FACTORIES]
    if unknown:
        raise SystemExit(f"Unknown tool(s): {', '.join(unknown)}. Choose from: {', '.join(TOOL_FACTORIES)}")
    return [TOOL_FACTORIES[name]() for name in names]


def interactive_loop(agent: MultiStepAgent, transcript: Path, stream: bool = False) -> None:
    while True:
        try:
            task = input("\nTask (or 'exit'): ").strip()
        except EOFError:
            break
        if task.lower() == "exit":
            break
        if not task:
            continue
        agent.run(task, stream=stream, reset=True)
        save_transcript(agent.logs, transcript)


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    model = OpenAIServerModel(model_id=args.model_id, base_url=args.base_url, api_key=args.api_key)
    agent = AGENT_TYPES[args.agent](
        model=model,
        tools=parse_tools(args.tools),
        max_steps=args.max_steps,
        planning=args.planning,
    )

    # Relative to the launch directory, not the sandbox.
    transcript = Path(args.transcript).resolve()
    with sandbox() if args.sandbox else nullcontext():
        interactive_loop(agent, transcript, stream=args.stream)


if __name__ == "__main__":
    main()
