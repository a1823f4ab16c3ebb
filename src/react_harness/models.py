# models.py
# Data contracts for the ReAct execution harness.
# No control flow lives here, only schema and validation.

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from react_harness.errors import ToolValidationError

FINAL_ANSWER_TOOL = "final_answer"

ParameterType = Literal["string", "integer", "number", "boolean", "array", "object", "any"]

_PYTHON_TYPES: dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
    "any": Any,
}


class AgentVariant(str, Enum):
    """Closed set of action-encoding protocols."""

    TOOL_CALLING = "tool-calling"
    CODE = "code"


class AgentState(str, Enum):
    """Position of a run in the step state machine."""

    RUNNING = "running"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_ACTION = "executing_action"
    TERMINATED = "terminated"


class RunStatus(str, Enum):
    SUCCESS = "success"
    STEP_LIMIT_REACHED = "step_limit_reached"
    FATAL = "fatal"


class StepKind(str, Enum):
    """How a step's observation was produced."""

    ACTION = "action"
    FINAL_ANSWER = "final_answer"
    PARSE_ERROR = "parse_error"
    VALIDATION_ERROR = "validation_error"
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_ERROR = "tool_error"
    EXECUTION_ERROR = "execution_error"

    @property
    def is_error(self) -> bool:
        return self not in (StepKind.ACTION, StepKind.FINAL_ANSWER)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolParameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: ParameterType = "string"
    description: str = ""
    required: bool = True


class ToolSpec(BaseModel):
    """Capability descriptor, used for prompt construction and argument checks."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique tool name.")
    description: str = Field(default="", description="What the tool does.")
    parameters: tuple[ToolParameter, ...] = Field(default_factory=tuple)

    def input_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for param in self.parameters:
            prop: dict[str, Any] = {} if param.type == "any" else {"type": param.type}
            if param.description:
                prop["description"] = param.description
            properties[param.name] = prop
        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.parameters if p.required],
        }

    def to_openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema(),
            },
        }

    def describe(self) -> str:
        """One prompt line per tool: name, description and inputs."""
        inputs = json.dumps(self.input_schema()["properties"], sort_keys=False)
        return f"- {self.name}: {self.description}\n    Takes inputs: {inputs}"

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Check arguments against the declared parameters.

        Required fields must be present, unknown fields are rejected, and
        values are type-checked strictly (no string-to-number coercion).
        Returns the arguments that were supplied, unchanged.
        Raises ToolValidationError on any mismatch.
        """
        fields: dict[str, Any] = {}
        for param in self.parameters:
            annotation = _PYTHON_TYPES[param.type]
            if param.required:
                fields[param.name] = (annotation, ...)
            else:
                fields[param.name] = (Optional[annotation], None)

        schema = create_model(
            f"{self.name}_arguments",
            __config__=ConfigDict(extra="forbid", strict=True),
            **fields,
        )
        try:
            schema.model_validate(arguments)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ToolValidationError(self.name, problems) from exc
        return dict(arguments)


# ---------------------------------------------------------------------------
# Actions and steps
# ---------------------------------------------------------------------------


class ToolCall(BaseModel):
    """A proposed structured action: tool name plus arguments."""

    model_config = ConfigDict(frozen=True)

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None

    @property
    def is_final_answer(self) -> bool:
        return self.name == FINAL_ANSWER_TOOL

    def render(self) -> str:
        return json.dumps({"name": self.name, "arguments": self.arguments}, ensure_ascii=False)


class CodeAction(BaseModel):
    """A generated script to run inside the interpreter context."""

    model_config = ConfigDict(frozen=True)

    code: str

    def render(self) -> str:
        return f"```py\n{self.code}\n```"


Action = Union[ToolCall, CodeAction]


class Step(BaseModel):
    """Immutable transcript entry produced by one reasoning/acting iteration."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="0-based position in the run.")
    thought: str = Field(default="", description="Model rationale preceding the action.")
    action: Optional[Action] = Field(default=None, description="None only when parsing failed.")
    observation: str = Field(default="", description="Tool output or error description.")
    kind: StepKind = StepKind.ACTION
    model_output: str = Field(default="", description="Raw model text for this step.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Task(BaseModel):
    model_config = ConfigDict(frozen=True)

    goal: str = Field(..., min_length=1)
    max_steps: int = Field(default=10, ge=1)


# ---------------------------------------------------------------------------
# Model responses
# ---------------------------------------------------------------------------


class RawToolCall(BaseModel):
    """A structured call as the provider sent it; arguments may still be encoded."""

    name: str
    arguments: Union[dict[str, Any], str] = Field(default_factory=dict)
    id: Optional[str] = None


class ModelResponse(BaseModel):
    """One complete assistant message from the model client."""

    content: str = ""
    tool_calls: list[RawToolCall] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------------

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.FATAL: 1,
    RunStatus.STEP_LIMIT_REACHED: 2,
}


class RunResult(BaseModel):
    """Terminal outcome of a run. The transcript is included in full."""

    model_config = ConfigDict(frozen=True)

    status: RunStatus
    task: Task
    steps: tuple[Step, ...] = Field(default_factory=tuple)
    answer: Optional[str] = None
    partial_answer: Optional[str] = None
    error_type: Optional[str] = None
    error: Optional[str] = None
    transitions: tuple[AgentState, ...] = Field(default_factory=tuple)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCESS
