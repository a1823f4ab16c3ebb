# parsing.py
# Action parsers for the two protocol variants.
#
# Both take one *complete* model message and return a ParsedResponse or
# raise ParseError. Neither ever sees a partial streaming fragment.

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from react_harness.errors import ParseError
from react_harness.models import (
    FINAL_ANSWER_TOOL,
    Action,
    CodeAction,
    ModelResponse,
    RawToolCall,
    ToolCall,
)

_THOUGHT_PREFIX = re.compile(r"^\s*(?:Thoughts?|Thinking)\s*:\s*", re.IGNORECASE)
_FINAL_ANSWER = re.compile(r"Final Answer\s*:\s*(.+)", re.IGNORECASE | re.DOTALL)
_TOOL_CALL_TAG = re.compile(r"<tool_call>(.*?)</tool_call>", re.DOTALL)
_CODE_BLOCK = re.compile(r"```[\w+.-]*[ \t]*\n(.*?)\n?[ \t]*```", re.DOTALL)
_TRAILING_CODE_LABEL = re.compile(r"\s*Code\s*:\s*$", re.IGNORECASE)

CODE_FORMAT_HINT = (
    "Make sure to include code with the correct pattern, for instance:\n"
    "Thought: Your thoughts\n"
    "Code:\n"
    "```py\n"
    "# Your python code here\n"
    "```"
)

CODE_FINAL_ANSWER_HINT = (
    "It seems like you're trying to return the final answer. Use:\n"
    "Code:\n"
    "```py\n"
    'final_answer("YOUR FINAL ANSWER HERE")\n'
    "```"
)

TOOL_CALL_FORMAT_HINT = (
    "Respond with exactly one tool call, for instance:\n"
    "Thought: Your thoughts\n"
    'Action: {"name": "tool_name", "arguments": {"param": "value"}}\n'
    'Use the final_answer tool to finish: {"name": "final_answer", "arguments": {"answer": "..."}}'
)


@dataclass(frozen=True)
class ParsedResponse:
    thought: str
    action: Action

    @property
    def is_final_answer(self) -> bool:
        return isinstance(self.action, ToolCall) and self.action.is_final_answer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _clean_thought(text: str) -> str:
    text = _TRAILING_CODE_LABEL.sub("", text.strip())
    return _THOUGHT_PREFIX.sub("", text).strip()


def _final_answer_call(text: str) -> Optional[ToolCall]:
    match = _FINAL_ANSWER.search(text)
    if not match or not match.group(1).strip():
        return None
    return ToolCall(name=FINAL_ANSWER_TOOL, arguments={"answer": match.group(1).strip()})


def _decode_arguments(name: str, arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            # strict=False tolerates literal newlines inside string values.
            arguments = json.loads(arguments, strict=False)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"Arguments for '{name}' are not valid JSON: {exc}\nPayload: {arguments}"
            ) from exc
    if arguments is None:
        return {}
    if not isinstance(arguments, dict):
        raise ParseError(
            f"Arguments for '{name}' must be a JSON object, got {type(arguments).__name__}."
        )
    return arguments


def _extract_action_json(text: str) -> Optional[str]:
    """JSON object after 'Action:', else the body of a <tool_call> tag."""
    if "Action:" in text:
        action_part = text.split("Action:", 1)[1]
        start, end = action_part.find("{"), action_part.rfind("}")
        if start != -1 and end > start:
            return action_part[start : end + 1]

    match = _TOOL_CALL_TAG.search(text)
    if match:
        body = match.group(1).strip()
        if body.startswith("{") and body.endswith("}"):
            return body
    return None


def _call_from_text(text: str) -> Optional[ToolCall]:
    payload = _extract_action_json(text)
    if payload is None:
        return None
    try:
        data = json.loads(payload, strict=False)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Action JSON is malformed: {exc}\nPayload: {payload}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"Action must be a JSON object.\nPayload: {payload}")

    name = data.get("name") or data.get("tool")
    if not isinstance(name, str) or not name.strip():
        raise ParseError(f"Action JSON has no tool name.\nPayload: {payload}")
    arguments = data.get("arguments", data.get("args", {}))
    return ToolCall(name=name.strip(), arguments=_decode_arguments(name, arguments))


def _normalize(raw: RawToolCall) -> ToolCall:
    return ToolCall(name=raw.name, arguments=_decode_arguments(raw.name, raw.arguments), id=raw.id)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


def parse_tool_calling_response(response: ModelResponse) -> ParsedResponse:
    """
    Extract exactly one structured call from a model message.

    Native provider tool calls win; otherwise an 'Action:' JSON object or a
    <tool_call> tag in the text is accepted. A text carrying only a
    'Final Answer:' marker is treated as a final_answer call.
    Raises ParseError for anything else.
    """
    content = response.content or ""

    if len(response.tool_calls) > 1:
        names = ", ".join(call.name for call in response.tool_calls)
        raise ParseError(
            f"Expected exactly one tool call, got {len(response.tool_calls)} ({names}). "
            "Call one tool per step."
        )

    if response.tool_calls:
        return ParsedResponse(_clean_thought(content), _normalize(response.tool_calls[0]))

    call = _call_from_text(content)
    if call is not None:
        thought = content.split("Action:", 1)[0] if "Action:" in content else ""
        thought = _TOOL_CALL_TAG.sub("", thought)
        return ParsedResponse(_clean_thought(thought), call)

    final = _final_answer_call(content)
    if final is not None:
        return ParsedResponse(_clean_thought(_FINAL_ANSWER.split(content)[0]), final)

    if not content.strip():
        raise ParseError("The response was empty. " + TOOL_CALL_FORMAT_HINT)
    raise ParseError("No tool call found in the response. " + TOOL_CALL_FORMAT_HINT)


def parse_code_response(text: str) -> ParsedResponse:
    """
    Extract the single fenced script block from a code-variant message.

    A text without code but with a 'Final Answer:' marker is treated as a
    final_answer call. Raises ParseError otherwise.
    """
    blocks = list(_CODE_BLOCK.finditer(text))

    if len(blocks) > 1:
        raise ParseError(
            f"Found {len(blocks)} code blocks; put all the code for this step in one block. "
            + CODE_FORMAT_HINT
        )

    if blocks:
        block = blocks[0]
        code = block.group(1).strip()
        if not code:
            raise ParseError("The code block is empty. " + CODE_FORMAT_HINT)
        return ParsedResponse(_clean_thought(text[: block.start()]), CodeAction(code=code))

    final = _final_answer_call(text)
    if final is not None:
        return ParsedResponse(_clean_thought(_FINAL_ANSWER.split(text)[0]), final)

    lowered = text.lower()
    if "final" in lowered and "answer" in lowered:
        raise ParseError("The code blob is invalid. " + CODE_FINAL_ANSWER_HINT)
    raise ParseError("The code blob is invalid. " + CODE_FORMAT_HINT)
