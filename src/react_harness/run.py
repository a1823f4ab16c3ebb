# run.py
# Entry point. Argument parsing, config and wiring only.
#
# Exit codes:
#   0  final answer produced
#   1  fatal error (config, model, or parse budget exhausted)
#   2  step budget exhausted without a final answer

import argparse
import sys
from typing import Optional, Sequence

from react_harness import display
from react_harness.config import DEFAULT_TOOLS, load_config
from react_harness.errors import ConfigError
from react_harness.harness import Agent
from react_harness.models import AgentVariant

CONFIG_ERROR_EXIT = 1


def _tool_list(value: str) -> tuple[str, ...]:
    return tuple(name.strip() for name in value.split(",") if name.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="react-harness",
        description="Run a ReAct agent on a task until it produces a final answer.",
    )
    parser.add_argument("task", help="The task for the agent to solve.")
    parser.add_argument(
        "-a",
        "--agent",
        choices=[v.value for v in AgentVariant],
        default=AgentVariant.TOOL_CALLING.value,
        help="Action protocol: structured tool calls or generated Python code.",
    )
    parser.add_argument(
        "-l",
        "--tools",
        type=_tool_list,
        default=DEFAULT_TOOLS,
        help="Comma-separated tool names (default: %(default)s).",
    )
    parser.add_argument("-m", "--model-id", default=None, help="Model identifier.")
    parser.add_argument("-k", "--api-key", default=None, help="Provider API key.")
    parser.add_argument("-b", "--base-url", default=None, help="OpenAI-compatible endpoint URL.")
    parser.add_argument("--max-steps", type=int, default=10, help="Step budget.")
    parser.add_argument("--stream", action="store_true", help="Stream model output.")
    parser.add_argument(
        "--final-answer-on-step-limit",
        action="store_true",
        help="Ask the model for a best-effort answer when the budget runs out.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    display.configure_logging(args.verbose)

    try:
        config = load_config(
            api_key=args.api_key,
            model_id=args.model_id,
            base_url=args.base_url,
            tools=args.tools,
            variant=AgentVariant(args.agent),
            max_steps=args.max_steps,
            stream=args.stream,
            final_answer_on_step_limit=args.final_answer_on_step_limit,
        )
        agent = Agent.from_config(
            config,
            on_step=display.step,
            on_fragment=display.stream_fragment if args.stream else None,
        )
    except ConfigError as exc:
        display.halt(f"ConfigError: {exc}")
        return CONFIG_ERROR_EXIT

    display.banner(config.model_id, config.variant.value, agent.registry.names())
    display.task_received(args.task)

    result = agent.run(args.task)
    display.outcome(result)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
