# display.py
# All terminal output for the ReAct harness.
#
# This module owns presentation entirely. harness.py never formats strings;
# run.py wires these functions in as the agent's callbacks. Swap this file to
# change the entire UI.
#
# Colour language:
#   cyan     run lifecycle
#   magenta  ReACT internals (Thought / Action / Observation)
#   yellow   recoverable errors fed back to the model
#   green    success
#   red      fatal halts

import json
import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.text import Text

from react_harness.models import CodeAction, RunResult, RunStatus, Step, StepKind, ToolCall

console = Console()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_logging(verbose: bool = False) -> None:
    """Route the harness's loggers through rich. WARNING unless verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # Keep HTTP client chatter out of the transcript.
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    """Truncate, then escape: model and tool text never carries markup."""
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(model_id: str, variant: str, tools: list[str]) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]ReAct Agent Harness[/bold cyan]\n"
            "[dim]Reason → Act → Observe, until a final answer or the step budget[/dim]\n\n"
            f"[dim]Model   :[/dim] [white]{escape(model_id)}[/white]\n"
            f"[dim]Variant :[/dim] [white]{escape(variant)}[/white]\n"
            f"[dim]Tools   :[/dim] [white]{escape(', '.join(tools))}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def task_received(task: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW TASK[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(task)}[/white]",
            title=_label("TASK", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def stream_fragment(text: str) -> None:
    console.print(text, end="", style="dim", markup=False, highlight=False)


def step(step: Step) -> None:
    console.print()
    console.print(f"[bold cyan]  STEP {step.index + 1}[/bold cyan]")

    if step.thought:
        console.print(f"  [magenta]Thought[/magenta]  [dim white]{_mono(step.thought, 200)}[/dim white]")

    if isinstance(step.action, ToolCall):
        console.print(
            f"  [magenta]Action[/magenta]   [bold white]{escape(step.action.name)}[/bold white]"
            f"  [dim]{_mono(json.dumps(step.action.arguments, ensure_ascii=False), 200)}[/dim]"
        )
    elif isinstance(step.action, CodeAction):
        console.print("  [magenta]Code[/magenta]")
        console.print(Syntax(step.action.code, "python", theme="monokai", padding=(0, 4)))

    if step.kind is StepKind.FINAL_ANSWER:
        console.print(f"  [bold green]✓ Final answer[/bold green]  [white]{_mono(step.observation, 140)}[/white]")
    elif step.kind.is_error:
        console.print(
            f"  [yellow]{step.kind.value}[/yellow]  [white]{_mono(step.observation, 300)}[/white]"
        )
    else:
        console.print(f"  [magenta]Observe[/magenta]  [white]{_mono(step.observation, 140)}[/white]")


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result)}[/white]",
            title=_label("RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


def step_limit(max_steps: int, partial_answer: str | None) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold yellow]Step budget of {max_steps} exhausted without a final answer.[/bold yellow]\n\n"
            f"[white]{escape(partial_answer or 'No partial answer available.')}[/white]",
            title=_label("STEP LIMIT", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )
    console.print()


def outcome(result: RunResult) -> None:
    if result.status is RunStatus.SUCCESS:
        final_result(result.answer or "")
    elif result.status is RunStatus.STEP_LIMIT_REACHED:
        step_limit(result.task.max_steps, result.partial_answer)
    else:
        halt(f"{result.error_type}: {result.error}")
