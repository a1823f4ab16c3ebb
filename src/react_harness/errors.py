# errors.py
# Exception taxonomy for the ReAct harness.
#
# Recoverable classes (ParseError within budget, ToolNotFoundError,
# ToolValidationError, ToolExecutionError) become observations.
# ConfigError and exhausted ModelError/ParseError end the run as Fatal.
# StepLimitReached is a RunStatus, not an exception.


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


class ConfigError(HarnessError):
    """Missing credential or malformed setup. Always fatal, before any step."""


class DuplicateToolError(HarnessError):
    """Raised when a tool name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is already registered.")
        self.name = name


class RegistryFrozenError(HarnessError):
    """Raised when registering into a registry that is already shared."""


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class ModelError(HarnessError):
    """Network, auth or rate-limit failure from the model client."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ParseError(HarnessError):
    """Raised when a model response does not match the expected protocol shape."""


class RunCancelledError(HarnessError):
    """Raised at a suspension point once the run's cancel event is set."""


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolNotFoundError(HarnessError):
    """Raised when an action names a tool absent from the registry."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        message = f"Tool '{name}' is not in the registry."
        if available:
            message += f" Available tools: {', '.join(available)}."
        super().__init__(message)
        self.name = name


class ToolValidationError(HarnessError):
    """Raised when arguments fail the tool's parameter checks."""

    def __init__(self, tool: str, problems: str) -> None:
        super().__init__(f"Invalid arguments for tool '{tool}': {problems}")
        self.tool = tool
        self.problems = problems


class ToolExecutionError(HarnessError):
    """Wraps a tool's own failure."""

    def __init__(self, tool: str, cause: BaseException) -> None:
        super().__init__(f"Tool '{tool}' failed: {type(cause).__name__}: {cause}")
        self.tool = tool
        self.cause = cause


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


class MemoryClosedError(HarnessError):
    """Raised when appending to the memory of a terminated run."""


class StepOrderError(HarnessError):
    """Raised when a step's index would leave a gap or go backwards."""
