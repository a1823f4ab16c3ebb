# memory.py
# Append-only transcript for one run.
#
# Steps are never reordered or rewritten. Once terminate() is called the log
# is closed for good; a new run gets a new Memory.

import logging
from typing import Iterator, Optional

from react_harness.errors import MemoryClosedError, StepOrderError
from react_harness.models import Step, ToolCall

logger = logging.getLogger(__name__)

RETRY_NUDGE = (
    "Now let's retry: take care not to repeat previous errors! "
    "If you have retried several times, try a completely different approach."
)


class Memory:
    """
    Ordered log of Steps, plus the system prompt and task it was started with.

    Read access never mutates state, so to_prompt_messages() can be replayed
    any number of times and always yields the same sequence.
    """

    def __init__(self, system_prompt: str, task: str) -> None:
        self.system_prompt = system_prompt
        self.task = task
        self._steps: list[Step] = []
        self._terminated = False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, step: Step) -> None:
        if self._terminated:
            raise MemoryClosedError(
                f"Run is terminated; refusing to append step {step.index}."
            )
        expected = len(self._steps)
        if step.index != expected:
            raise StepOrderError(f"Expected step index {expected}, got {step.index}.")
        self._steps.append(step)
        logger.debug("Appended step %d (%s)", step.index, step.kind.value)

    def terminate(self) -> None:
        self._terminated = True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def steps(self) -> tuple[Step, ...]:
        return tuple(self._steps)

    @property
    def next_index(self) -> int:
        return len(self._steps)

    @property
    def last_step(self) -> Optional[Step]:
        return self._steps[-1] if self._steps else None

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(tuple(self._steps))

    def to_prompt_messages(self) -> list[dict[str, str]]:
        """System prompt, task, then assistant/observation pairs in step order."""
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": f"New task:\n{self.task}"},
        ]
        for step in self._steps:
            messages.append({"role": "assistant", "content": render_assistant(step)})
            messages.append({"role": "user", "content": render_observation(step)})
        return messages

    def to_summary_messages(self) -> list[dict[str, str]]:
        """Task plus actions and observations only; used once the budget is spent."""
        messages = [{"role": "user", "content": f"New task:\n{self.task}"}]
        for step in self._steps:
            if step.action is not None:
                messages.append({"role": "assistant", "content": step.action.render()})
            messages.append({"role": "user", "content": f"Observation: {step.observation}"})
        return messages


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_assistant(step: Step) -> str:
    if step.action is None:
        # Unparsable output is echoed back so the model can see its mistake.
        return step.model_output or step.thought
    parts = []
    if step.thought:
        parts.append(f"Thought: {step.thought}")
    if isinstance(step.action, ToolCall):
        parts.append(f"Action: {step.action.render()}")
    else:
        parts.append(f"Code:\n{step.action.render()}")
    return "\n".join(parts)


def render_observation(step: Step) -> str:
    if step.kind.is_error:
        return f"Error: {step.observation}\n{RETRY_NUDGE}"
    return f"Observation: {step.observation}"
