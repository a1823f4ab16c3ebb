# registry.py
# Tool registry: name to capability descriptor plus executable.
#
# A registry is populated once, then frozen. Frozen registries are read-only
# and may be shared by agents running concurrently.

import inspect
import logging
import threading
from typing import Any, Callable, Iterable, Mapping, Optional, get_args, get_origin

from react_harness.errors import (
    ConfigError,
    DuplicateToolError,
    RegistryFrozenError,
    ToolNotFoundError,
)
from react_harness.models import FINAL_ANSWER_TOOL, ToolParameter, ToolSpec

logger = logging.getLogger(__name__)

_SIMPLE_TYPE_MAP = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    dict: "object",
}


# ---------------------------------------------------------------------------
# Signature helpers
# ---------------------------------------------------------------------------


def _parameter_type(annotation: Any) -> str:
    """Map a Python annotation to a ToolParameter type name."""
    if annotation is inspect.Parameter.empty:
        return "string"
    if annotation is Any:
        return "any"

    origin = get_origin(annotation)
    args = get_args(annotation)

    # Optional[T] / T | None
    if args and type(None) in args:
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _parameter_type(non_none[0])
        return "any"

    return _SIMPLE_TYPE_MAP.get(origin or annotation, "string")


def _parse_google_docstring(doc: str) -> tuple[str, dict[str, str]]:
    """Split a Google-style docstring into (summary, {param: description})."""
    summary_lines: list[str] = []
    params: dict[str, str] = {}
    in_summary = True
    in_args = False
    current: Optional[str] = None

    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_summary, in_args = False, True
            continue
        if in_summary:
            if stripped:
                summary_lines.append(stripped)
            elif summary_lines:
                in_summary = False
            continue
        if not in_args or not stripped:
            continue
        # Next section header ends the Args block.
        if stripped.endswith(":") and not line.startswith(" "):
            break
        if ":" in stripped:
            name, desc = stripped.split(":", 1)
            name = name.split("(")[0].strip()
            if name.isidentifier():
                current = name
                params[name] = desc.strip()
                continue
        if current:
            params[current] += " " + stripped

    return " ".join(summary_lines), params


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------


class Tool:
    """A ToolSpec bound to the callable that implements it."""

    def __init__(self, spec: ToolSpec, fn: Callable[..., Any]) -> None:
        self.spec = spec
        self.fn = fn

    @property
    def name(self) -> str:
        return self.spec.name

    def __call__(self, **arguments: Any) -> str:
        result = self.fn(**arguments)
        return result if isinstance(result, str) else str(result)

    def __repr__(self) -> str:
        return f"Tool({self.spec.name!r})"

    @classmethod
    def from_function(
        cls,
        fn: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "Tool":
        """Derive the ToolSpec from the function's signature and docstring."""
        summary, param_docs = _parse_google_docstring(inspect.getdoc(fn) or "")
        parameters = []
        for param in inspect.signature(fn).parameters.values():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            parameters.append(
                ToolParameter(
                    name=param.name,
                    type=_parameter_type(param.annotation),
                    description=param_docs.get(param.name, ""),
                    required=param.default is inspect.Parameter.empty,
                )
            )
        spec = ToolSpec(
            name=name or fn.__name__,
            description=description or summary or fn.__name__,
            parameters=tuple(parameters),
        )
        return cls(spec, fn)


def tool(
    _fn: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Any:
    """Decorator turning a plain function into a Tool."""

    def wrapper(fn: Callable[..., Any]) -> Tool:
        return Tool.from_function(fn, name=name, description=description)

    if _fn is None:
        return wrapper
    return wrapper(_fn)


def _final_answer(answer: Any) -> str:
    """Provide the final answer to the task. Ends the run.

    Args:
        answer: The final answer to the user's task.
    """
    return answer if isinstance(answer, str) else str(answer)


final_answer_tool = Tool.from_function(_final_answer, name=FINAL_ANSWER_TOOL)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Insertion-ordered mapping from tool name to Tool."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for item in tools:
            self.register(item)

    def register(self, item: Tool) -> None:
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register '{item.name}': registry is frozen."
                )
            if item.name in self._tools:
                raise DuplicateToolError(item.name)
            self._tools[item.name] = item
        logger.debug("Registered tool %s", item.name)

    def freeze(self) -> "ToolRegistry":
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def resolve(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name, self.names()) from None

    def list_specs(self) -> list[ToolSpec]:
        return [item.spec for item in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self):
        return iter(self._tools.values())


def build_registry(tool_names: Iterable[str], catalog: Mapping[str, Tool]) -> ToolRegistry:
    """
    Register final_answer plus the named catalog tools, then freeze.
    Raises ConfigError on an unknown name.
    """
    registry = ToolRegistry([final_answer_tool])
    for name in tool_names:
        if name == FINAL_ANSWER_TOOL:
            continue
        if name not in catalog:
            raise ConfigError(
                f"Unknown tool '{name}'. Choose from: {', '.join(sorted(catalog))}."
            )
        registry.register(catalog[name])
    return registry.freeze()
