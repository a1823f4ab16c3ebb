# model.py
# Model client boundary.
#
# The harness only depends on the Model protocol. OpenAIModel is the
# concrete collaborator for any OpenAI-compatible endpoint (OpenAI,
# OpenRouter, Ollama, vLLM, ...).
#
# Streaming is a lazy generator of TextDelta events terminated by one
# MessageComplete event. Closing the generator closes the HTTP stream.

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, Union

import openai
from openai import OpenAI

from react_harness.config import AgentConfig
from react_harness.errors import ModelError, RunCancelledError
from react_harness.models import ModelResponse, RawToolCall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class MessageComplete:
    response: ModelResponse


StreamEvent = Union[TextDelta, MessageComplete]


class Model(Protocol):
    """Turns a conversation plus tool specs into one assistant message."""

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ModelResponse: ...

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Iterator[StreamEvent]: ...


def collect_stream(
    events: Iterator[StreamEvent],
    on_fragment: Optional[Callable[[str], None]] = None,
    cancel: Optional[threading.Event] = None,
) -> ModelResponse:
    """
    Consume a stream to its end-of-message signal and return the full message.

    Fragments are only forwarded for display; nothing is parsed until the
    MessageComplete event arrives. Raises ModelError if the stream ends
    early and RunCancelledError if `cancel` is set mid-stream.
    """
    try:
        for event in events:
            if cancel is not None and cancel.is_set():
                raise RunCancelledError("Run cancelled while streaming the model response.")
            if isinstance(event, MessageComplete):
                return event.response
            if on_fragment is not None and event.text:
                on_fragment(event.text)
    finally:
        close = getattr(events, "close", None)
        if close is not None:
            close()
    raise ModelError("Model stream ended without an end-of-message signal.")


# ---------------------------------------------------------------------------
# OpenAI-compatible client
# ---------------------------------------------------------------------------

_RETRYABLE = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def _wrap(exc: openai.OpenAIError) -> ModelError:
    retryable = isinstance(exc, _RETRYABLE)
    return ModelError(f"Failed to get response from model: {exc}", retryable=retryable)


class OpenAIModel:
    """
    Chat-completions client built from an AgentConfig.

    Retries are disabled on the SDK client; the harness's RetryPolicy owns
    backoff so every attempt is visible to the run.
    """

    def __init__(self, config: AgentConfig, client: Optional[OpenAI] = None) -> None:
        self.model_id = config.model_id
        self.temperature = config.temperature
        self.max_tokens = config.max_tokens
        self._client = client or OpenAI(
            base_url=config.base_url,
            api_key=config.api_key.get_secret_value(),
            max_retries=0,
        )

    def _request(self, messages: list[dict[str, Any]], tools: Optional[list[dict[str, Any]]]) -> dict:
        request: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            request["tools"] = tools
        return request

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> ModelResponse:
        try:
            response = self._client.chat.completions.create(**self._request(messages, tools))
        except openai.OpenAIError as exc:
            raise _wrap(exc) from exc

        if not response.choices:
            raise ModelError("No message returned from model.", retryable=True)
        message = response.choices[0].message
        return ModelResponse(
            content=(message.content or "").strip(),
            tool_calls=[
                RawToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "")
                for tc in (message.tool_calls or [])
            ],
        )

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Iterator[StreamEvent]:
        try:
            stream = self._client.chat.completions.create(
                **self._request(messages, tools), stream=True
            )
        except openai.OpenAIError as exc:
            raise _wrap(exc) from exc

        content: list[str] = []
        calls: dict[int, dict[str, Any]] = {}
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    content.append(delta.content)
                    yield TextDelta(delta.content)
                for tc in delta.tool_calls or []:
                    entry = calls.setdefault(tc.index, {"id": None, "name": "", "arguments": ""})
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function is not None:
                        entry["name"] += tc.function.name or ""
                        entry["arguments"] += tc.function.arguments or ""
        except openai.OpenAIError as exc:
            raise _wrap(exc) from exc
        finally:
            stream.close()

        yield MessageComplete(
            ModelResponse(
                content="".join(content).strip(),
                tool_calls=[RawToolCall(**calls[i]) for i in sorted(calls)],
            )
        )
