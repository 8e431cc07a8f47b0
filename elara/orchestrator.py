from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
from typing import Any, Dict, Generator, Iterator, List, Optional, Sequence, Tuple

from .errors import ElaraError
from .llm import (
    ChainMarkupFilter,
    ChatCompletionsClient,
    ToolRegistry,
    parse_tool_calls,
    unpack_assistant_message,
)
from .schemas import ConversationMessage
from .tools import ToolContext

logger = logging.getLogger("elara.orchestrator")

DEFAULT_MAX_STEPS = 5


class LoopState(str, Enum):
    INFERRING = "inferring"
    TOOL_EXECUTING = "tool-executing"
    DONE = "done"


def _ensure_jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except TypeError:
        if hasattr(value, "model_dump"):
            return value.model_dump()
        return str(value)


def build_message_history(
    conversation: Sequence[ConversationMessage],
    system_prompt: str,
) -> List[Dict[str, Any]]:
    """
    Convert browser-side chat messages into provider messages.

    Completed tool invocations on an assistant message are replayed as an
    assistant tool-call message followed by one tool message per result, so
    the model sees what it fetched on earlier turns. Pending invocations are
    dropped.
    """
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for entry in conversation:
        if entry.role == "user":
            messages.append({"role": "user", "content": entry.content})
            continue
        finished = [
            invocation
            for invocation in entry.toolInvocations or []
            if invocation.state == "result"
        ]
        if finished:
            messages.append(
                {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {
                            "id": invocation.toolCallId,
                            "type": "function",
                            "function": {
                                "name": invocation.toolName,
                                "arguments": json.dumps(invocation.args),
                            },
                        }
                        for invocation in finished
                    ],
                }
            )
            for invocation in finished:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": invocation.toolCallId,
                        "name": invocation.toolName,
                        "content": json.dumps(_ensure_jsonable(invocation.result)),
                    }
                )
        if entry.content:
            messages.append({"role": "assistant", "content": entry.content})
    return messages


@dataclass
class ChatLoop:
    """
    Bounded tool-calling loop for one chat turn.

    The loop moves between INFERRING and TOOL_EXECUTING until the model answers
    without tool calls, `max_steps` inferences have run, or something fails;
    it then lands in DONE. `run` yields stream events as they happen and always
    ends with a `finish` event.
    """

    client: ChatCompletionsClient
    registry: ToolRegistry
    context: ToolContext
    model: str
    system_prompt: str = ""
    temperature: float = 0.2
    max_steps: int = DEFAULT_MAX_STEPS
    stream: bool = True
    state: LoopState = LoopState.INFERRING
    steps: int = 0
    finish_reason: Optional[str] = None

    def run(self, conversation: Sequence[ConversationMessage]) -> Iterator[Dict[str, Any]]:
        messages = build_message_history(conversation, self.system_prompt)
        tools = self.registry.definitions() or None
        pending: List[Dict[str, Any]] = []
        self.state = LoopState.INFERRING
        self.steps = 0
        self.finish_reason = None

        try:
            while self.state is not LoopState.DONE:
                if self.state is LoopState.INFERRING:
                    if self.steps >= self.max_steps:
                        logger.info("Stopping after %d steps with tool calls outstanding.", self.steps)
                        self.finish_reason = "max-steps"
                        self.state = LoopState.DONE
                        continue
                    self.steps += 1
                    logger.debug("Step %d/%d: inferring (model=%s)", self.steps, self.max_steps, self.model)
                    text, pending = yield from self._infer(messages, tools)
                    messages.append(_assistant_message(text, pending))
                    if pending:
                        self.state = LoopState.TOOL_EXECUTING
                    else:
                        self.finish_reason = "stop"
                        self.state = LoopState.DONE
                elif self.state is LoopState.TOOL_EXECUTING:
                    for call in pending:
                        yield from self._execute(call, messages)
                    pending = []
                    self.state = LoopState.INFERRING
        except ElaraError as exc:
            logger.error("Chat loop failed at step %d: %s", self.steps, exc)
            self.finish_reason = "error"
            self.state = LoopState.DONE
            yield {"type": "error", "message": str(exc)}
        except Exception as exc:  # pragma: no cover
            logger.exception("Unexpected failure in chat loop at step %d", self.steps)
            self.finish_reason = "error"
            self.state = LoopState.DONE
            yield {"type": "error", "message": f"{type(exc).__name__}: {exc}"}

        logger.info("Chat loop finished: reason=%s steps=%d", self.finish_reason, self.steps)
        yield {"type": "finish", "finishReason": self.finish_reason, "steps": self.steps}

    def _infer(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
    ) -> Generator[Dict[str, Any], None, Tuple[str, List[Dict[str, Any]]]]:
        if self.stream:
            message: Dict[str, Any] = {}
            markup = ChainMarkupFilter()
            for chunk in self.client.stream_chat(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                tools=tools,
            ):
                if chunk["type"] == "text":
                    visible = markup.feed(chunk["text"])
                    if visible:
                        yield {"type": "text", "text": visible}
                elif chunk["type"] == "message":
                    message = chunk["message"]
            tail = markup.flush()
            if tail:
                yield {"type": "text", "text": tail}
            if markup.reasoning:
                logger.debug("Model reasoning: %s", " | ".join(markup.reasoning))
            text, _ = unpack_assistant_message(message)
        else:
            response = self.client.chat(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                tools=tools,
            )
            choice = (response.get("choices") or [{}])[0]
            message = choice.get("message") or {}
            text, reasoning = unpack_assistant_message(message)
            if reasoning:
                logger.debug("Model reasoning: %s", " | ".join(reasoning))
            if text:
                yield {"type": "text", "text": text}
        return text, parse_tool_calls(message)

    def _execute(
        self, call: Dict[str, Any], messages: List[Dict[str, Any]]
    ) -> Iterator[Dict[str, Any]]:
        name = call["name"]
        arguments = call.get("arguments") or {}
        yield {
            "type": "tool_call",
            "toolCallId": call["id"],
            "toolName": name,
            "args": arguments,
        }
        event: Dict[str, Any] = {"type": "tool_result", "toolCallId": call["id"], "toolName": name}
        try:
            result = _ensure_jsonable(self.registry.execute(name, arguments, self.context))
        except ElaraError as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            event["error"] = str(exc)
            content = {"error": str(exc)}
        else:
            event["result"] = result
            content = result
        messages.append(
            {
                "role": "tool",
                "tool_call_id": call["id"],
                "name": name,
                "content": json.dumps(content),
            }
        )
        yield event


def _assistant_message(text: str, calls: List[Dict[str, Any]]) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": text or ""}
    if calls:
        message["tool_calls"] = [
            {
                "id": call["id"],
                "type": "function",
                "function": {"name": call["name"], "arguments": json.dumps(call["arguments"])},
            }
            for call in calls
        ]
    return message


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"
