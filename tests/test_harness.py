import json
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from react_harness.config import AgentConfig
from react_harness.errors import ConfigError, ModelError
from react_harness.harness import Agent, build_system_prompt
from react_harness.memory import Memory
from react_harness.model import MessageComplete, TextDelta
from react_harness.models import (
    AgentState,
    AgentVariant,
    CodeAction,
    ModelResponse,
    RawToolCall,
    RunStatus,
    StepKind,
    Task,
)
from react_harness.registry import ToolRegistry, final_answer_tool, tool

# ---------------------------------------------------------------------------
# Fixtures and stubs
# ---------------------------------------------------------------------------


class ScriptedModel:
    """Returns scripted responses in order; the last one repeats forever."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, messages, tools=None):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item if isinstance(item, ModelResponse) else ModelResponse(content=item)

    def stream(self, messages, tools=None):
        response = self.complete(messages, tools)
        for i in range(0, len(response.content), 5):
            yield TextDelta(response.content[i : i + 5])
        yield MessageComplete(response)


@tool
def search(query: str) -> str:
    """Search the web.

    Args:
        query: What to search for.
    """
    return f"Results for {query}: X is a letter."


@tool
def broken(query: str) -> str:
    """Always fails."""
    raise RuntimeError("boom")


def call(name, **arguments):
    return ModelResponse(tool_calls=[RawToolCall(name=name, arguments=json.dumps(arguments))])


def make_config(**overrides):
    defaults = dict(api_key="test-key", max_steps=5, retry_backoff_seconds=0)
    defaults.update(overrides)
    return AgentConfig(**defaults)


def make_agent(responses, registry=None, **overrides):
    model = ScriptedModel(responses)
    registry = registry or ToolRegistry([final_answer_tool, search, broken])
    sleeps = []
    agent = Agent(make_config(**overrides), model, registry, sleep=sleeps.append)
    return agent, model, sleeps


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_search_then_final_answer_succeeds_in_two_steps():
    agent, model, _ = make_agent(
        [call("search", query="X"), call("final_answer", answer="X is...")]
    )

    result = agent.run("find X")

    assert result.status is RunStatus.SUCCESS
    assert result.answer == "X is..."
    assert len(result.steps) == 2
    assert result.steps[0].observation.startswith("Results for X")
    assert result.steps[1].kind is StepKind.FINAL_ANSWER
    assert result.exit_code == 0
    assert len(model.calls) == 2


def test_step_indices_are_gapless_from_zero():
    agent, _, _ = make_agent([call("nonexistent", q=1)], max_steps=4)

    result = agent.run("find X")

    assert [step.index for step in result.steps] == [0, 1, 2, 3]


def test_unknown_tool_reaches_step_limit_exactly():
    agent, model, _ = make_agent([call("nonexistent", q=1)], max_steps=4)

    result = agent.run("find X")

    assert result.status is RunStatus.STEP_LIMIT_REACHED
    assert len(result.steps) == 4
    assert len(model.calls) == 4
    assert all(step.kind is StepKind.TOOL_NOT_FOUND for step in result.steps)
    assert "not in the registry" in result.steps[0].observation
    assert result.partial_answer == result.steps[-1].observation
    assert result.exit_code == 2


def test_unparsable_responses_end_fatal_after_retry_count():
    agent, model, _ = make_agent(["I am not sure."], max_steps=10, max_parse_retries=2)

    result = agent.run("find X")

    assert result.status is RunStatus.FATAL
    assert result.error_type == "ParseError"
    assert len(result.steps) == 3
    assert all(step.kind is StepKind.PARSE_ERROR for step in result.steps)
    assert result.exit_code == 1


def test_unparsable_responses_never_exceed_budget():
    agent, model, _ = make_agent(["I am not sure."], max_steps=2, max_parse_retries=5)

    result = agent.run("find X")

    assert result.status is RunStatus.FATAL
    assert result.error_type == "ParseError"
    assert len(result.steps) == 2
    assert len(model.calls) == 2


def test_parse_failure_is_fed_back_and_recovers():
    agent, model, _ = make_agent(["garbage", call("final_answer", answer="done")])

    result = agent.run("find X")

    assert result.status is RunStatus.SUCCESS
    feedback = model.calls[1]["messages"][-1]
    assert feedback["role"] == "user"
    assert feedback["content"].startswith("Error:")
    assert "No tool call found" in feedback["content"]
    assert model.calls[1]["messages"][-2] == {"role": "assistant", "content": "garbage"}


def test_missing_required_argument_is_observed_and_run_continues():
    agent, _, _ = make_agent([call("search"), call("final_answer", answer="ok")])

    result = agent.run("find X")

    assert result.steps[0].kind is StepKind.VALIDATION_ERROR
    assert "query" in result.steps[0].observation
    assert result.status is RunStatus.SUCCESS
    assert len(result.steps) == 2


def test_tool_exception_becomes_observation():
    agent, _, _ = make_agent([call("broken", query="x"), call("final_answer", answer="ok")])

    result = agent.run("find X")

    assert result.steps[0].kind is StepKind.TOOL_ERROR
    assert "boom" in result.steps[0].observation
    assert result.status is RunStatus.SUCCESS


def test_plain_final_answer_text_is_conclusive():
    agent, _, _ = make_agent([ModelResponse(content="Thought: easy\nFinal Answer: 4")])

    result = agent.run("2 + 2?")

    assert result.status is RunStatus.SUCCESS
    assert result.answer == "4"
    assert result.steps[0].thought == "easy"


def test_tool_specs_are_sent_to_the_model():
    agent, model, _ = make_agent([call("final_answer", answer="ok")])

    agent.run("find X")

    names = [t["function"]["name"] for t in model.calls[0]["tools"]]
    assert names == ["final_answer", "search", "broken"]


# ---------------------------------------------------------------------------
# Model errors
# ---------------------------------------------------------------------------


def test_model_error_retried_then_succeeds():
    agent, model, sleeps = make_agent(
        [ModelError("rate limited", retryable=True), call("final_answer", answer="ok")],
        retry_backoff_seconds=1.0,
    )

    result = agent.run("find X")

    assert result.status is RunStatus.SUCCESS
    assert sleeps == [1.0]
    assert len(result.steps) == 1


def test_model_error_exhausted_is_fatal():
    agent, model, sleeps = make_agent(
        [ModelError("down", retryable=True)],
        max_model_retries=2,
        retry_backoff_seconds=1.0,
    )

    result = agent.run("find X")

    assert result.status is RunStatus.FATAL
    assert result.error_type == "ModelError"
    assert result.steps == ()
    assert sleeps == [1.0, 2.0]
    assert len(model.calls) == 3


def test_non_retryable_model_error_is_fatal_immediately():
    agent, model, sleeps = make_agent([ModelError("bad key", retryable=False)])

    result = agent.run("find X")

    assert result.status is RunStatus.FATAL
    assert sleeps == []
    assert len(model.calls) == 1


# ---------------------------------------------------------------------------
# Transcript replay
# ---------------------------------------------------------------------------

SCRIPT = [
    call("search", query="X"),
    call("search", query="Y"),
    call("final_answer", answer="done"),
]


def test_prompt_messages_match_what_the_model_saw():
    agent, model, _ = make_agent(list(SCRIPT))

    result = agent.run("find X")

    replayed = Memory(agent.system_prompt, "find X")
    for step in result.steps[:-1]:
        replayed.append(step)
    assert replayed.to_prompt_messages() == model.calls[-1]["messages"]
    assert replayed.to_prompt_messages() == replayed.to_prompt_messages()


def test_replaying_a_run_reproduces_the_transcript():
    first, _, _ = make_agent(list(SCRIPT))
    second, _, _ = make_agent(list(SCRIPT))

    a = first.run("find X")
    b = second.run("find X")

    def shape(result):
        return [(s.index, s.thought, s.action, s.observation, s.kind) for s in result.steps]

    assert shape(a) == shape(b)


def test_on_step_receives_every_step_in_order():
    seen = []
    model = ScriptedModel(list(SCRIPT))
    agent = Agent(
        make_config(),
        model,
        ToolRegistry([final_answer_tool, search]),
        on_step=seen.append,
    )

    result = agent.run("find X")

    assert tuple(seen) == result.steps


# ---------------------------------------------------------------------------
# Code variant
# ---------------------------------------------------------------------------


def test_code_variant_final_answer_from_script():
    agent, model, _ = make_agent(
        [
            "Thought: compute\n```py\nx = 6 * 7\nprint(x)\n```",
            "Thought: done\n```py\nfinal_answer(str(x))\n```",
        ],
        variant=AgentVariant.CODE,
    )

    result = agent.run("What is 6 * 7?")

    assert result.status is RunStatus.SUCCESS
    assert result.answer == "42"
    assert result.steps[0].thought == "compute"
    assert result.steps[0].action == CodeAction(code="x = 6 * 7\nprint(x)")
    assert result.steps[0].observation == "Execution logs:\n42"
    assert model.calls[0]["tools"] is None


def test_code_variant_runtime_error_is_not_fatal():
    agent, _, _ = make_agent(
        ["```py\n1 / 0\n```", "```py\nfinal_answer('ok')\n```"],
        variant=AgentVariant.CODE,
    )

    result = agent.run("divide")

    assert result.steps[0].kind is StepKind.EXECUTION_ERROR
    assert "ZeroDivisionError" in result.steps[0].observation
    assert result.status is RunStatus.SUCCESS
    assert result.answer == "ok"


def test_code_variant_calls_tools_through_registry():
    agent, _, _ = make_agent(
        ["```py\nr = search('X')\nprint(r)\n```", "```py\nfinal_answer(r)\n```"],
        variant=AgentVariant.CODE,
    )

    result = agent.run("find X")

    assert "Results for X" in result.steps[0].observation
    assert result.answer.startswith("Results for X")


def test_code_variant_missing_block_is_parse_error():
    agent, _, _ = make_agent(
        ["Let me think about it.", "```py\nfinal_answer('ok')\n```"],
        variant=AgentVariant.CODE,
    )

    result = agent.run("find X")

    assert result.steps[0].kind is StepKind.PARSE_ERROR
    assert result.status is RunStatus.SUCCESS


# ---------------------------------------------------------------------------
# Streaming, cancellation, limits
# ---------------------------------------------------------------------------


def test_streaming_accumulates_fragments_before_parsing():
    content = "Thought: done\nFinal Answer: streamed"
    fragments = []
    model = ScriptedModel([content])
    agent = Agent(
        make_config(stream=True),
        model,
        ToolRegistry([final_answer_tool]),
        on_fragment=fragments.append,
    )

    result = agent.run("stream it")

    assert result.status is RunStatus.SUCCESS
    assert result.answer == "streamed"
    assert len(fragments) > 1
    assert "".join(fragments) == content


def test_cancelled_run_is_fatal_and_calls_nothing():
    agent, model, _ = make_agent([call("final_answer", answer="ok")])
    cancel = threading.Event()
    cancel.set()

    result = agent.run("find X", cancel=cancel)

    assert result.status is RunStatus.FATAL
    assert result.error_type == "RunCancelledError"
    assert model.calls == []


def test_run_result_records_state_transitions():
    agent, _, _ = make_agent(
        [call("search", query="X"), call("final_answer", answer="X is...")]
    )
    cycle = (AgentState.RUNNING, AgentState.AWAITING_MODEL, AgentState.EXECUTING_ACTION)

    assert agent.run("find X").transitions == cycle * 2 + (AgentState.TERMINATED,)

    cancel = threading.Event()
    cancel.set()
    assert agent.run("find X", cancel=cancel).transitions == (
        AgentState.RUNNING,
        AgentState.AWAITING_MODEL,
        AgentState.TERMINATED,
    )


def test_best_effort_answer_at_step_limit():
    agent, model, _ = make_agent(
        [call("nope"), call("nope"), ModelResponse(content="Best guess")],
        max_steps=2,
        final_answer_on_step_limit=True,
    )

    result = agent.run("find X")

    assert result.status is RunStatus.STEP_LIMIT_REACHED
    assert result.partial_answer == "Best guess"
    assert len(result.steps) == 2
    assert model.calls[-1]["tools"] is None


def test_task_budget_overrides_config():
    agent, model, _ = make_agent([call("nope")], max_steps=5)

    result = agent.run(Task(goal="find X", max_steps=1))

    assert result.status is RunStatus.STEP_LIMIT_REACHED
    assert len(result.steps) == 1


# ---------------------------------------------------------------------------
# Construction and concurrency
# ---------------------------------------------------------------------------


def test_agent_requires_final_answer_tool():
    with pytest.raises(ConfigError, match="final_answer"):
        Agent(make_config(), ScriptedModel(["x"]), ToolRegistry([search]))


def test_registry_is_frozen_by_agent():
    registry = ToolRegistry([final_answer_tool, search])
    Agent(make_config(), ScriptedModel(["x"]), registry)
    assert registry.frozen


def test_system_prompt_lists_tools_in_registration_order():
    registry = ToolRegistry([final_answer_tool, search])
    prompt = build_system_prompt(AgentVariant.TOOL_CALLING, registry.list_specs())
    assert prompt.index("- final_answer") < prompt.index("- search")
    assert prompt == build_system_prompt(AgentVariant.TOOL_CALLING, registry.list_specs())


def test_concurrent_runs_do_not_share_state():
    class EchoTaskModel:
        def complete(self, messages, tools=None):
            return call("final_answer", answer=messages[1]["content"])

    agent = Agent(make_config(), EchoTaskModel(), ToolRegistry([final_answer_tool, search]))
    tasks = [f"task-{i}" for i in range(8)]

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(agent.run, tasks))

    for task, result in zip(tasks, results):
        assert result.status is RunStatus.SUCCESS
        assert result.answer.endswith(task)
        assert len(result.steps) == 1
