# interpreter.py
# Execution context for code-variant scripts.
#
# The only callables a script receives are the registry's tools, a curated
# set of pure builtins, and an import hook limited to AUTHORIZED_IMPORTS.
# Authorized modules are handed over as ModuleViews, so modules they import
# themselves (sys, os, threading, ...) stay out of reach. Names and
# attributes starting with an underscore are rejected before the script runs.
# This bounds *which* capabilities a script may reach; it is not a process
# sandbox and must be paired with OS-level isolation for untrusted models.

import ast
import builtins
import io
import logging
import types
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from react_harness.dispatcher import ToolDispatcher, truncate
from react_harness.models import FINAL_ANSWER_TOOL, ToolCall, ToolSpec

logger = logging.getLogger(__name__)

AUTHORIZED_IMPORTS = (
    "collections",
    "datetime",
    "itertools",
    "math",
    "queue",
    "random",
    "re",
    "stat",
    "statistics",
    "time",
    "unicodedata",
)

_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "callable", "chr", "complex", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hash", "int",
    "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min",
    "next", "ord", "pow", "range", "repr", "reversed", "round", "set", "slice",
    "sorted", "str", "sum", "tuple", "zip",
    "classmethod", "object", "property", "staticmethod", "super",
    "ArithmeticError", "AssertionError", "Exception", "IndexError", "KeyError",
    "LookupError", "NameError", "RuntimeError", "StopIteration", "TypeError",
    "ValueError", "ZeroDivisionError",
)


SCRIPT_MODULE_NAME = "__agent__"


class FinalAnswerSignal(BaseException):
    """Unwinds a script once final_answer() is called."""

    def __init__(self, answer: str) -> None:
        super().__init__(answer)
        self.answer = answer


class ForbiddenCodeError(Exception):
    """Raised when a script reaches for a capability outside the boundary."""


@dataclass(frozen=True)
class ExecutionOutcome:
    logs: str = ""
    result: Optional[str] = None
    final_answer: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.final_answer is not None

    def observation(self, limit: int) -> str:
        if self.final_answer is not None:
            text = self.final_answer
        elif self.error is not None:
            text = f"{self.error}\nExecution logs:\n{self.logs}" if self.logs else self.error
        elif self.logs and self.result is not None:
            text = f"Execution logs:\n{self.logs}\nResult: {self.result}"
        elif self.logs:
            text = f"Execution logs:\n{self.logs}"
        elif self.result is not None:
            text = f"Result: {self.result}"
        else:
            text = "No output or logs generated"
        return truncate(text, limit)


# ---------------------------------------------------------------------------
# Static checks
# ---------------------------------------------------------------------------


def check_code(tree: ast.AST) -> None:
    """Reject imports outside the allow-list and any underscore access."""
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                _check_import(alias.name)
        elif isinstance(node, ast.ImportFrom):
            if node.level or not node.module:
                raise ForbiddenCodeError("Relative imports are not allowed.")
            _check_import(node.module)
            for alias in node.names:
                if alias.name.startswith("_"):
                    raise ForbiddenCodeError(f"Importing '{alias.name}' is not allowed.")
        elif isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise ForbiddenCodeError(f"Access to attribute '{node.attr}' is not allowed.")
        elif isinstance(node, ast.Name) and node.id.startswith("__"):
            raise ForbiddenCodeError(f"Use of name '{node.id}' is not allowed.")


def _check_import(module: str) -> None:
    if module.split(".")[0] not in AUTHORIZED_IMPORTS:
        raise ForbiddenCodeError(
            f"Import of '{module}' is not allowed. "
            f"Authorized imports: {', '.join(AUTHORIZED_IMPORTS)}."
        )


def _restricted_import(name, globals=None, locals=None, fromlist=(), level=0):
    if level:
        raise ImportError("Relative imports are not allowed.")
    _check_import(name)
    module = builtins.__import__(name, globals, locals, fromlist, level)
    return ModuleView(module)


class ModuleView:
    """
    Read-only view of an authorized module.

    Only public attributes are copied. Attributes that are themselves modules
    are dropped, except submodules of the same package, which get their own
    view (collections.abc).
    """

    def __init__(self, module: types.ModuleType) -> None:
        attributes = self.__dict__
        for name, value in vars(module).items():
            if name.startswith("_"):
                continue
            if isinstance(value, types.ModuleType):
                if not value.__name__.startswith(module.__name__ + "."):
                    continue
                value = ModuleView(value)
            attributes[name] = value
        attributes["__name__"] = module.__name__

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Module '{self.__name__}' is read-only.")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"Module '{self.__name__}' is read-only.")

    def __repr__(self) -> str:
        return f"<module '{self.__name__}'>"


# ---------------------------------------------------------------------------
# Tool capabilities
# ---------------------------------------------------------------------------


def _bind_tool(spec: ToolSpec, dispatcher: ToolDispatcher, on_final: Callable[[str], None]):
    param_names = [p.name for p in spec.parameters]

    def capability(*args: Any, **kwargs: Any) -> str:
        if len(args) > len(param_names):
            raise TypeError(
                f"{spec.name}() takes {len(param_names)} positional argument(s) "
                f"but {len(args)} were given"
            )
        arguments = dict(zip(param_names, args))
        for key, value in kwargs.items():
            if key in arguments:
                raise TypeError(f"{spec.name}() got multiple values for argument '{key}'")
            arguments[key] = value
        output = dispatcher.invoke(ToolCall(name=spec.name, arguments=arguments))
        if spec.name == FINAL_ANSWER_TOOL:
            on_final(output)
            raise FinalAnswerSignal(output)
        return output

    capability.__name__ = spec.name
    capability.__doc__ = spec.description
    return capability


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------


class CodeInterpreter:
    """
    Runs scripts for one agent run.

    Variables defined by a script stay available to later scripts of the
    same run. Tool names and builtins are re-bound before every execution,
    so a script cannot permanently shadow them.
    """

    def __init__(self, dispatcher: ToolDispatcher) -> None:
        self._dispatcher = dispatcher
        self._final_answer: Optional[str] = None
        self._capabilities = {
            spec.name: _bind_tool(spec, dispatcher, self._record_final)
            for spec in dispatcher.registry.list_specs()
        }
        self._state: dict[str, Any] = {}

    @property
    def state(self) -> Mapping[str, Any]:
        return {k: v for k, v in self._state.items() if k not in self._reserved_names()}

    def _reserved_names(self) -> set[str]:
        return {"__builtins__", "__name__", *self._capabilities}

    def _record_final(self, answer: str) -> None:
        self._final_answer = answer

    def _builtins(self, buffer: io.StringIO) -> dict[str, Any]:
        def _print(*args: Any, sep: str = " ", end: str = "\n") -> None:
            buffer.write(sep.join(str(a) for a in args) + end)

        safe = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}
        safe["print"] = _print
        safe["__import__"] = _restricted_import
        safe["__build_class__"] = builtins.__build_class__
        return safe

    def run(self, code: str) -> ExecutionOutcome:
        buffer = io.StringIO()
        self._final_answer = None

        try:
            tree = ast.parse(code, mode="exec")
            check_code(tree)
        except SyntaxError as exc:
            return ExecutionOutcome(error=f"Code parsing failed: SyntaxError: {exc}")
        except ForbiddenCodeError as exc:
            return ExecutionOutcome(error=f"Forbidden code: {exc}")

        namespace = self._state
        namespace["__builtins__"] = self._builtins(buffer)
        namespace["__name__"] = SCRIPT_MODULE_NAME
        namespace.update(self._capabilities)

        trailing: Optional[ast.expr] = None
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            trailing = tree.body.pop().value

        result: Any = None
        try:
            exec(compile(tree, "<agent-code>", "exec"), namespace)
            if trailing is not None:
                result = eval(compile(ast.Expression(trailing), "<agent-code>", "eval"), namespace)
        except FinalAnswerSignal as signal:
            return ExecutionOutcome(logs=buffer.getvalue().rstrip("\n"), final_answer=signal.answer)
        except Exception as exc:
            logger.info("Code execution failed: %s: %s", type(exc).__name__, exc)
            return ExecutionOutcome(
                logs=buffer.getvalue().rstrip("\n"),
                error=f"Code execution failed: {type(exc).__name__}: {exc}",
            )

        logs = buffer.getvalue().rstrip("\n")
        if self._final_answer is not None:
            # final_answer() was called but its signal was swallowed by the script.
            return ExecutionOutcome(logs=logs, final_answer=self._final_answer)
        return ExecutionOutcome(logs=logs, result=None if result is None else str(result))
