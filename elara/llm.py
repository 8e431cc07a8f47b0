from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type
from uuid import uuid4

from pydantic import BaseModel, ValidationError
import requests

from .errors import LLMError, ToolError

logger = logging.getLogger("elara.llm")


@dataclass
class ToolDefinition:
    name: str
    description: str
    arguments: Type[BaseModel]
    handler: Callable[[Any, Any], Any]

    @property
    def parameters(self) -> Dict[str, Any]:
        schema = self.arguments.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        schema.setdefault("required", [])
        return schema

    def to_schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """
    Registry of callable tools exposed to the language model.

    Arguments coming back from the model are validated against the tool's
    pydantic model before the handler runs.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        arguments: Type[BaseModel],
        handler: Callable[[Any, Any], Any],
    ) -> None:
        self._tools[name] = ToolDefinition(
            name=name,
            description=description,
            arguments=arguments,
            handler=handler,
        )

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    def execute(self, name: str, arguments: Dict[str, Any], context: Any = None) -> Any:
        if name not in self._tools:
            raise ToolError(f"Tool '{name}' is not registered.")
        tool = self._tools[name]
        try:
            parsed = tool.arguments.model_validate(arguments)
        except ValidationError as exc:
            raise ToolError(f"Invalid arguments for '{name}': {exc}") from exc
        return tool.handler(parsed, context)

    def names(self) -> List[str]:
        return list(self._tools)

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self._tools)


class ChatCompletionsClient:
    """
    Minimal HTTP client for an OpenAI-compatible chat completions endpoint.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 120) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout

    def _payload(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float,
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
        max_tokens: Optional[int],
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "stream": stream,
        }
        if tools:
            payload["tools"] = tools
        if tool_choice:
            payload["tool_choice"] = tool_choice
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return payload

    def _post(self, payload: Dict[str, Any], stream: bool) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = requests.post(
                self.base_url,
                headers=headers,
                data=json.dumps(payload),
                timeout=self.timeout,
                stream=stream,
            )
        except requests.RequestException as exc:
            raise LLMError(f"Language model unreachable at {self.base_url}: {exc}") from exc
        if response.status_code >= 400:
            raise LLMError(
                f"Language model returned {response.status_code}: {response.text}"
            )
        return response

    def chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload = self._payload(
            model=model,
            messages=messages,
            temperature=temperature,
            tools=tools,
            tool_choice=tool_choice,
            max_tokens=max_tokens,
            stream=False,
        )
        response = self._post(payload, stream=False)
        try:
            return response.json()
        except ValueError as exc:
            raise LLMError("Failed to decode language model response as JSON.") from exc

    def stream_chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.2,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        """
        Stream a completion as server-sent events.

        Yields `{"type": "text", "text": ...}` for each content delta and, once
        the stream ends, a single `{"type": "message", "message": {...}}` with
        the assembled assistant message (content plus any tool calls).
        """
        payload = self._payload(
            model=model,
            messages=messages,
            temperature=temperature,
            tools=tools,
            tool_choice=tool_choice,
            max_tokens=max_tokens,
            stream=True,
        )
        response = self._post(payload, stream=True)
        text_parts: List[str] = []
        calls: Dict[int, Dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        try:
            for raw_line in response.iter_lines():
                # SSE bodies are UTF-8 regardless of what the content type claims.
                line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError as exc:
                    raise LLMError(f"Malformed stream chunk: {data[:200]}") from exc
                choice = (chunk.get("choices") or [{}])[0]
                finish_reason = choice.get("finish_reason") or finish_reason
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if content:
                    text_parts.append(content)
                    yield {"type": "text", "text": content}
                for call in delta.get("tool_calls") or []:
                    _merge_tool_call_delta(calls, call)
        finally:
            response.close()

        message: Dict[str, Any] = {"role": "assistant", "content": "".join(text_parts)}
        if calls:
            message["tool_calls"] = [calls[index] for index in sorted(calls)]
        yield {"type": "message", "message": message, "finish_reason": finish_reason}


def _merge_tool_call_delta(calls: Dict[int, Dict[str, Any]], delta: Dict[str, Any]) -> None:
    index = delta.get("index")
    if index is None:
        index = len(calls)
    slot = calls.setdefault(
        index,
        {"id": None, "type": "function", "function": {"name": "", "arguments": ""}},
    )
    if delta.get("id"):
        slot["id"] = delta["id"]
    function = delta.get("function") or {}
    if function.get("name"):
        slot["function"]["name"] += function["name"]
    arguments = function.get("arguments")
    if isinstance(arguments, str):
        slot["function"]["arguments"] += arguments
    elif arguments is not None:
        slot["function"]["arguments"] = json.dumps(arguments)


CHAIN_PATTERN = re.compile(r"<(think|reasoning|thought)>(.*?)</\1>", re.IGNORECASE | re.DOTALL)


CHAIN_TAGS = ("think", "reasoning", "thought")
OPEN_CHAIN_PATTERN = re.compile(r"<(%s)>" % "|".join(CHAIN_TAGS), re.IGNORECASE)


class ChainMarkupFilter:
    """
    Strip <think>-style reasoning from text that arrives in pieces.

    Tags may be split across deltas, so a trailing fragment that could still
    become an opening tag is held back until the next `feed` or `flush`.
    Stripped reasoning is collected in `reasoning`.
    """

    def __init__(self) -> None:
        self.reasoning: List[str] = []
        self._buffer = ""
        self._closing: Optional[str] = None

    def feed(self, text: str) -> str:
        self._buffer += text
        visible: List[str] = []
        while self._buffer:
            if self._closing is not None:
                index = self._buffer.lower().find(self._closing)
                if index < 0:
                    break
                self._keep_reasoning(self._buffer[:index])
                self._buffer = self._buffer[index + len(self._closing):]
                self._closing = None
                continue
            match = OPEN_CHAIN_PATTERN.search(self._buffer)
            if match:
                visible.append(self._buffer[: match.start()])
                self._closing = f"</{match.group(1).lower()}>"
                self._buffer = self._buffer[match.end():]
                continue
            cut = _partial_tag_start(self._buffer)
            visible.append(self._buffer[:cut])
            self._buffer = self._buffer[cut:]
            break
        return "".join(visible)

    def flush(self) -> str:
        remainder, self._buffer = self._buffer, ""
        if self._closing is not None:
            # Unterminated reasoning never reaches the user.
            self._keep_reasoning(remainder)
            self._closing = None
            return ""
        return remainder

    def _keep_reasoning(self, text: str) -> None:
        snippet = text.strip()
        if snippet:
            self.reasoning.append(snippet)


def _partial_tag_start(text: str) -> int:
    index = text.rfind("<")
    if index < 0:
        return len(text)
    tail = text[index:].lower()
    if any(f"<{tag}>".startswith(tail) for tag in CHAIN_TAGS):
        return index
    return len(text)


def unpack_assistant_message(message: Dict[str, Any]) -> Tuple[str, List[str]]:
    """
    Normalise assistant payloads into readable text and reasoning snippets.

    Content may be a plain string or a list of typed blocks; reasoning wrapped
    in <think>-style markup is split out of the visible text.
    """
    reasoning_segments: List[str] = []
    text_segments: List[str] = []

    def strip_chain_markup(text: str) -> str:
        def _capture(match: re.Match[str]) -> str:
            snippet = (match.group(2) or "").strip()
            if snippet:
                reasoning_segments.append(snippet)
            return ""

        return CHAIN_PATTERN.sub(_capture, text or "")

    content = message.get("content")
    if isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                text_segments.append(strip_chain_markup(str(block)))
                continue
            block_type = block.get("type")
            if block_type in {"reasoning", "analysis"}:
                snippet = str(block.get("text") or block.get("content") or "").strip()
                if snippet:
                    reasoning_segments.append(snippet)
            elif block_type == "text":
                text_segments.append(strip_chain_markup(block.get("text", "")))
    elif isinstance(content, str):
        text_segments.append(strip_chain_markup(content))

    reasoning_field = message.get("reasoning") or message.get("reasoning_content")
    if isinstance(reasoning_field, str) and reasoning_field.strip():
        reasoning_segments.append(reasoning_field.strip())

    text = "\n".join(segment.strip() for segment in text_segments if segment.strip())
    return text, reasoning_segments


def parse_tool_calls(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten OpenAI-style tool calls into {id, name, arguments} records."""
    formatted = []
    for call in message.get("tool_calls") or []:
        function = call.get("function") or {}
        raw_arguments = function.get("arguments")
        if isinstance(raw_arguments, dict):
            arguments = raw_arguments
        else:
            try:
                arguments = json.loads(raw_arguments or "{}")
            except json.JSONDecodeError:
                arguments = {"_raw": raw_arguments}
        if not isinstance(arguments, dict):
            arguments = {"_raw": arguments}
        formatted.append(
            {
                "id": call.get("id") or uuid4().hex,
                "name": function.get("name", ""),
                "arguments": arguments,
            }
        )
    return formatted
