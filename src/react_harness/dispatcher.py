# dispatcher.py
# Validation and invocation boundary between proposed actions and tools.
#
# invoke() raises; dispatch() never does for tool-side failures. The loop
# uses dispatch() so a bad call becomes an observation, not a crash.

import json
import logging
from dataclasses import dataclass

from react_harness.errors import ToolExecutionError, ToolNotFoundError, ToolValidationError
from react_harness.models import StepKind, ToolCall
from react_harness.registry import ToolRegistry

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = "\n....This content has been truncated due to the {limit} character limit....."


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_NOTICE.format(limit=limit)


@dataclass(frozen=True)
class DispatchResult:
    observation: str
    kind: StepKind

    @property
    def is_final(self) -> bool:
        return self.kind is StepKind.FINAL_ANSWER


class ToolDispatcher:
    """Resolves, validates and runs ToolCalls against a registry."""

    def __init__(self, registry: ToolRegistry, observation_char_limit: int = 30000) -> None:
        self.registry = registry
        self.observation_char_limit = observation_char_limit

    def invoke(self, call: ToolCall) -> str:
        """
        Run one call and return the raw tool output.

        Raises ToolNotFoundError, ToolValidationError or ToolExecutionError.
        No timeout is enforced here.
        """
        item = self.registry.resolve(call.name)
        arguments = item.spec.validate_arguments(call.arguments)
        logger.info("Executing tool call: %s with arguments: %s", call.name, arguments)
        try:
            return item(**arguments)
        except Exception as exc:
            raise ToolExecutionError(call.name, exc) from exc

    def dispatch(self, call: ToolCall) -> DispatchResult:
        try:
            output = self.invoke(call)
        except ToolNotFoundError as exc:
            logger.info("Tool not found: %s", call.name)
            return DispatchResult(str(exc), StepKind.TOOL_NOT_FOUND)
        except ToolValidationError as exc:
            spec = self.registry.resolve(call.name).spec
            message = (
                f"{exc} As a reminder, this tool's description is: {spec.description} "
                f"and takes inputs: {json.dumps(spec.input_schema()['properties'])}"
            )
            logger.info("Validation failed for %s: %s", call.name, exc.problems)
            return DispatchResult(message, StepKind.VALIDATION_ERROR)
        except ToolExecutionError as exc:
            logger.info("Error in %s: %s", call.name, exc.cause)
            return DispatchResult(str(exc), StepKind.TOOL_ERROR)

        if call.is_final_answer:
            return DispatchResult(output, StepKind.FINAL_ANSWER)
        return DispatchResult(truncate(output, self.observation_char_limit), StepKind.ACTION)
