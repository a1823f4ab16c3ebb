# harness.py
# ReAct Agent Harness
#
# The Agent is the kernel. The model is a passive responder; this module
# owns all control flow, state, and termination decisions.
#
# Control flow per step:
#   RUNNING → build prompt from memory
#   → AWAITING_MODEL (single suspension point, retry policy)
#   → EXECUTING_ACTION (parse → dispatch / interpret → append step)
#   → RUNNING | TERMINATED(success | step_limit_reached | fatal)
#
# Presentation is delegated to the on_step / on_fragment callbacks, with no
# formatting here.

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union

from react_harness.config import AgentConfig
from react_harness.dispatcher import ToolDispatcher
from react_harness.errors import ConfigError, HarnessError, ModelError, ParseError, RunCancelledError
from react_harness.interpreter import AUTHORIZED_IMPORTS, CodeInterpreter
from react_harness.memory import Memory
from react_harness.model import Model, OpenAIModel, collect_stream
from react_harness.models import (
    FINAL_ANSWER_TOOL,
    AgentState,
    AgentVariant,
    CodeAction,
    ModelResponse,
    RunResult,
    RunStatus,
    Step,
    StepKind,
    Task,
    ToolCall,
    ToolSpec,
)
from react_harness.parsing import parse_code_response, parse_tool_calling_response
from react_harness.policy import RetryPolicy
from react_harness.registry import Tool, ToolRegistry, build_registry
from react_harness.tools import build_catalog

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

TOOL_CALLING_SYSTEM_PROMPT = """\
You are an expert assistant who solves tasks step by step using tools.

At each step, first explain your reasoning, then call exactly ONE tool. \
You will receive the tool's output as an observation and can then decide \
on the next step. Use the format:

Thought: <your reasoning about the task and the previous observations>
Action: {{"name": "<tool_name>", "arguments": {{"<param>": "<value>"}}}}

Available tools:
{tool_descriptions}

Rules:
- Always provide a tool call, never answer in plain text.
- Only use these tools: {tool_names}.
- Arguments must match the tool's inputs exactly; do not invent parameters.
- Never repeat a call with the exact same arguments.
- When you have the answer, call final_answer with it. This ends the task.\
"""

CODE_SYSTEM_PROMPT = """\
You are an expert assistant who solves tasks step by step by writing Python code.

At each step, first explain your reasoning, then write ONE block of Python code. \
Its printed output and the value of its last expression are returned to you \
as an observation. Use the format:

Thought: <your reasoning about the task and the previous observations>
Code:
```py
# your python code here
```

The tools below are available as plain Python functions:
{tool_descriptions}

Rules:
- Only these functions are available: {tool_names}, plus Python builtins.
- You may only import: {authorized_imports}.
- Variables persist between steps; reuse them instead of recomputing.
- Use print() to see intermediate results.
- Names starting with an underscore are not accessible.
- When you have the answer, call final_answer("...") in your code. This ends the task.\
"""

STEP_LIMIT_SYSTEM_PROMPT = (
    "An agent tried to answer a user query but it got stuck and failed to do so. "
    "You are tasked with providing an answer instead. Here is the agent's memory:"
)


def build_system_prompt(variant: AgentVariant, specs: list[ToolSpec]) -> str:
    template = CODE_SYSTEM_PROMPT if variant is AgentVariant.CODE else TOOL_CALLING_SYSTEM_PROMPT
    return template.format(
        tool_descriptions="\n".join(spec.describe() for spec in specs),
        tool_names=", ".join(spec.name for spec in specs),
        authorized_imports=", ".join(AUTHORIZED_IMPORTS),
    )


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


@dataclass
class _Run:
    """Everything owned by one run. Never shared between runs."""

    task: Task
    memory: Memory
    interpreter: Optional[CodeInterpreter]
    cancel: Optional[threading.Event]
    state: AgentState = AgentState.RUNNING
    parse_failures: int = 0
    transitions: list[AgentState] = field(default_factory=list)


def _raw_output(response: ModelResponse) -> str:
    parts = [response.content] if response.content else []
    for call in response.tool_calls:
        arguments = call.arguments if isinstance(call.arguments, str) else str(call.arguments)
        parts.append(f"<tool_call name={call.name!r}>{arguments}</tool_call>")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class Agent:
    """
    Step executor for one configured agent variant.

    One Agent may serve several runs, including concurrent ones: all mutable
    per-run state lives in a private _Run object, and the registry is frozen
    on construction.

    Example:
        config = load_config(variant=AgentVariant.CODE)
        agent = Agent.from_config(config)
        result = agent.run("What is the 20th Fibonacci number?")
    """

    def __init__(
        self,
        config: AgentConfig,
        model: Model,
        registry: ToolRegistry,
        on_step: Optional[Callable[[Step], None]] = None,
        on_fragment: Optional[Callable[[str], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if FINAL_ANSWER_TOOL not in registry:
            raise ConfigError(f"The registry must contain the '{FINAL_ANSWER_TOOL}' tool.")
        self.config = config
        self.model = model
        self.registry = registry.freeze()
        self.policy = RetryPolicy.from_config(config)
        self.dispatcher = ToolDispatcher(self.registry, config.observation_char_limit)
        self.system_prompt = build_system_prompt(config.variant, self.registry.list_specs())
        self.on_step = on_step
        self.on_fragment = on_fragment
        self._sleep = sleep
        self._executors = {
            AgentVariant.TOOL_CALLING: self._execute_tool_calling,
            AgentVariant.CODE: self._execute_code,
        }

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        catalog: Optional[Mapping[str, Tool]] = None,
        model: Optional[Model] = None,
        **kwargs,
    ) -> "Agent":
        """Wire the registry and the OpenAI-compatible client from a config."""
        if catalog is None:
            catalog = build_catalog(config)
        registry = build_registry(config.tools, catalog)
        return cls(config, model or OpenAIModel(config), registry, **kwargs)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, task: Union[str, Task], cancel: Optional[threading.Event] = None) -> RunResult:
        """
        Drive the state machine until a terminal state.

        Always returns a RunResult; errors that end the run are reported
        through status=FATAL rather than raised.
        """
        if isinstance(task, str):
            task = Task(goal=task, max_steps=self.config.max_steps)

        run = _Run(
            task=task,
            memory=Memory(self.system_prompt, task.goal),
            interpreter=(
                CodeInterpreter(self.dispatcher)
                if self.config.variant is AgentVariant.CODE
                else None
            ),
            cancel=cancel,
        )
        logger.info("Starting %s run: %s", self.config.variant.value, task.goal)

        try:
            while run.memory.next_index < task.max_steps:
                self._transition(run, AgentState.RUNNING)
                messages = run.memory.to_prompt_messages()

                self._transition(run, AgentState.AWAITING_MODEL)
                response = self._await_model(run, messages)

                self._transition(run, AgentState.EXECUTING_ACTION)
                step = self._executors[self.config.variant](run, response)
                run.memory.append(step)
                if self.on_step is not None:
                    self.on_step(step)

                if step.kind is StepKind.FINAL_ANSWER:
                    return self._finish(run, RunStatus.SUCCESS, answer=step.observation)

                if step.kind is StepKind.PARSE_ERROR:
                    run.parse_failures += 1
                    if self.policy.parse_budget_exhausted(run.parse_failures):
                        return self._fatal(run, ParseError(step.observation))
                else:
                    run.parse_failures = 0

            last = run.memory.last_step
            if last is not None and last.kind is StepKind.PARSE_ERROR:
                return self._fatal(run, ParseError(last.observation))
            return self._finish(
                run,
                RunStatus.STEP_LIMIT_REACHED,
                partial_answer=self._partial_answer(run),
            )
        except HarnessError as exc:
            return self._fatal(run, exc)
        finally:
            run.memory.terminate()

    # ------------------------------------------------------------------
    # AWAITING_MODEL
    # ------------------------------------------------------------------

    def _check_cancel(self, run: _Run) -> None:
        if run.cancel is not None and run.cancel.is_set():
            raise RunCancelledError("Run cancelled.")

    def _backoff_sleep(self, run: _Run) -> Callable[[float], None]:
        if run.cancel is None:
            return self._sleep
        return lambda delay: run.cancel.wait(delay)

    def _model_tools(self) -> Optional[list[dict]]:
        if self.config.variant is AgentVariant.CODE:
            return None
        return [spec.to_openai_schema() for spec in self.registry.list_specs()]

    def _await_model(self, run: _Run, messages: list[dict]) -> ModelResponse:
        tools = self._model_tools()

        def call() -> ModelResponse:
            self._check_cancel(run)
            if self.config.stream:
                return collect_stream(
                    self.model.stream(messages, tools),
                    on_fragment=self.on_fragment,
                    cancel=run.cancel,
                )
            return self.model.complete(messages, tools)

        response = self.policy.call_model(call, sleep=self._backoff_sleep(run))
        self._check_cancel(run)
        return response

    # ------------------------------------------------------------------
    # EXECUTING_ACTION
    # ------------------------------------------------------------------

    def _dispatch_step(self, run: _Run, thought: str, call: ToolCall, raw: str) -> Step:
        result = self.dispatcher.dispatch(call)
        return Step(
            index=run.memory.next_index,
            thought=thought,
            action=call,
            observation=result.observation,
            kind=result.kind,
            model_output=raw,
        )

    def _parse_failure(self, run: _Run, exc: ParseError, raw: str) -> Step:
        logger.info("Parse failure at step %d: %s", run.memory.next_index, exc)
        return Step(
            index=run.memory.next_index,
            observation=str(exc),
            kind=StepKind.PARSE_ERROR,
            model_output=raw,
        )

    def _execute_tool_calling(self, run: _Run, response: ModelResponse) -> Step:
        raw = _raw_output(response)
        try:
            parsed = parse_tool_calling_response(response)
        except ParseError as exc:
            return self._parse_failure(run, exc, raw)
        return self._dispatch_step(run, parsed.thought, parsed.action, raw)

    def _execute_code(self, run: _Run, response: ModelResponse) -> Step:
        raw = response.content
        try:
            parsed = parse_code_response(raw)
        except ParseError as exc:
            return self._parse_failure(run, exc, raw)

        if isinstance(parsed.action, ToolCall):
            return self._dispatch_step(run, parsed.thought, parsed.action, raw)

        action: CodeAction = parsed.action
        logger.info("Code: %s", action.code)
        outcome = run.interpreter.run(action.code)
        if outcome.is_final:
            kind = StepKind.FINAL_ANSWER
        elif outcome.error is not None:
            kind = StepKind.EXECUTION_ERROR
        else:
            kind = StepKind.ACTION
        return Step(
            index=run.memory.next_index,
            thought=parsed.thought,
            action=action,
            observation=outcome.observation(self.config.observation_char_limit),
            kind=kind,
            model_output=raw,
        )

    # ------------------------------------------------------------------
    # TERMINATED
    # ------------------------------------------------------------------

    def _transition(self, run: _Run, state: AgentState) -> None:
        run.state = state
        run.transitions.append(state)
        logger.debug("Step %d: %s", run.memory.next_index, state.value)

    def _partial_answer(self, run: _Run) -> Optional[str]:
        last = run.memory.last_step
        fallback = last.observation if last is not None else None
        if not self.config.final_answer_on_step_limit:
            return fallback

        messages = [{"role": "system", "content": STEP_LIMIT_SYSTEM_PROMPT}]
        messages.extend(run.memory.to_summary_messages())
        messages.append(
            {
                "role": "user",
                "content": (
                    "Based on the above, please provide an answer to the following "
                    f"user request:\n```\n{run.task.goal}\n```"
                ),
            }
        )
        try:
            response = self.policy.call_model(
                lambda: self.model.complete(messages, None),
                sleep=self._backoff_sleep(run),
            )
        except ModelError as exc:
            logger.warning("Could not produce a best-effort answer: %s", exc)
            return fallback
        return response.content or fallback

    def _finish(self, run: _Run, status: RunStatus, **fields) -> RunResult:
        self._transition(run, AgentState.TERMINATED)
        run.memory.terminate()
        logger.info("Run finished: %s after %d step(s)", status.value, len(run.memory))
        return RunResult(
            status=status,
            task=run.task,
            steps=run.memory.steps,
            transitions=tuple(run.transitions),
            **fields,
        )

    def _fatal(self, run: _Run, exc: BaseException) -> RunResult:
        logger.error("Run failed: %s: %s", type(exc).__name__, exc)
        last = run.memory.last_step
        return self._finish(
            run,
            RunStatus.FATAL,
            error_type=type(exc).__name__,
            error=str(exc),
            partial_answer=last.observation if last is not None else None,
        )
