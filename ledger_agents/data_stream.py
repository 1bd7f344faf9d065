"""
Data stream wire format.

Newline-delimited records, each ``<tag>:<payload>``:

    0:"text delta"                                   text (JSON string)
    9:{"toolCallId","toolName","args"}               tool call started
    a:{"toolCallId","result"}                        tool result
    3:{"error": ...} or 3:"message"                  error
    e:{"finishReason", ...}                          step finish
    d:{"finishReason", ...}                          stream finish

The encoders are used by the HTTP API; the decoder reads the same format
back (tests, CLI clients, agent-to-agent calls over HTTP). Unknown tags
are ignored.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, Dict, List, Optional, Union

import httpx

from .errors import DecodeError

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "X-Vercel-AI-Data-Stream": "v1",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

DELEGATION_PREFIX = "delegate_to_"
UNKNOWN = "unknown"


# ============================================================================
# Encoding
# ============================================================================

def _record(tag: str, payload: Any) -> str:
    return f"{tag}:{json.dumps(payload, ensure_ascii=False, default=str)}\n"


def format_text(text: str) -> str:
    return _record("0", text)


def format_tool_call(tool_call_id: str, tool_name: str, args: Dict[str, Any]) -> str:
    return _record("9", {"toolCallId": tool_call_id, "toolName": tool_name, "args": args})


def format_tool_result(tool_call_id: str, result: Any) -> str:
    return _record("a", {"toolCallId": tool_call_id, "result": result})


def format_error(message: str) -> str:
    return _record("3", {"error": message})


def format_finish(reason: str = "stop") -> str:
    return _record("d", {"finishReason": reason})


# ============================================================================
# Events
# ============================================================================

@dataclass(frozen=True)
class TextChunk:
    content: str


@dataclass(frozen=True)
class ToolCallStart:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultEvent:
    id: str
    result: Any = None


@dataclass(frozen=True)
class ErrorEvent:
    message: str


StreamEvent = Union[TextChunk, ToolCallStart, ToolResultEvent, ErrorEvent]


class DecoderState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAULTED = "faulted"


@dataclass
class DecodedStream:
    """Everything decoded from one stream, in arrival order."""
    events: List[StreamEvent] = field(default_factory=list)

    @property
    def text_chunks(self) -> List[str]:
        return [e.content for e in self.events if isinstance(e, TextChunk)]

    @property
    def full_text(self) -> str:
        return "".join(self.text_chunks)

    @property
    def tool_calls(self) -> List[ToolCallStart]:
        return [e for e in self.events if isinstance(e, ToolCallStart)]

    @property
    def tool_results(self) -> List[ToolResultEvent]:
        return [e for e in self.events if isinstance(e, ToolResultEvent)]

    @property
    def errors(self) -> List[str]:
        return [e.message for e in self.events if isinstance(e, ErrorEvent)]

    def delegation_call(self) -> Optional[ToolCallStart]:
        """The first tool call addressed to another agent, if any."""
        for call in self.tool_calls:
            if call.name.startswith(DELEGATION_PREFIX):
                return call
        return None

    def called(self, name: str) -> bool:
        return any(call.name == name for call in self.tool_calls)


# ============================================================================
# Decoding
# ============================================================================

def unescape_text(body: str) -> str:
    """Fallback for text payloads that are not valid JSON strings."""
    if len(body) >= 2 and body.startswith('"') and body.endswith('"'):
        body = body[1:-1]
    # Protect escaped backslashes so "\\n" stays a backslash followed by n
    placeholder = "\x00"
    return (
        body.replace("\\\\", placeholder)
        .replace("\\n", "\n")
        .replace('\\"', '"')
        .replace(placeholder, "\\")
    )


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        error = payload.get("error", payload)
        if isinstance(error, dict):
            return str(error.get("message") or json.dumps(error))
        return str(error)
    return str(payload)


def parse_record(line: str) -> Optional[StreamEvent]:
    """
    Parse one record into an event.

    Returns None for records that carry no event (finish markers, unknown
    tags, step-finish without error). Raises DecodeError when the payload
    of a known tag is malformed.
    """
    tag, sep, body = line.partition(":")
    if not sep:
        raise DecodeError(f"Record without tag separator: {line[:80]}")

    if tag == "0":
        try:
            text = json.loads(body)
        except json.JSONDecodeError:
            text = unescape_text(body)
        if not isinstance(text, str):
            text = str(text)
        return TextChunk(text)

    if tag not in ("9", "a", "3", "e"):
        return None

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Malformed payload for tag {tag}: {body[:80]}") from e

    if tag == "9":
        if not isinstance(payload, dict):
            raise DecodeError(f"Tool call payload is not an object: {body[:80]}")
        args = payload.get("args")
        return ToolCallStart(
            id=str(payload.get("toolCallId") or UNKNOWN),
            name=str(payload.get("toolName") or UNKNOWN),
            args=args if isinstance(args, dict) else {},
        )

    if tag == "a":
        if not isinstance(payload, dict):
            raise DecodeError(f"Tool result payload is not an object: {body[:80]}")
        return ToolResultEvent(id=str(payload.get("toolCallId") or UNKNOWN), result=payload.get("result"))

    if tag == "3":
        return ErrorEvent(_error_message(payload))

    # Step finish: only interesting when it carries an error
    if isinstance(payload, dict) and payload.get("error"):
        return ErrorEvent(_error_message(payload))
    return None


class StreamDecoder:
    """
    Incremental decoder for the data stream format.

    Bytes are buffered and split on newlines before decoding, so records
    and multi-byte characters split across chunks are reassembled. One
    malformed record is logged and skipped; decoding continues.
    """

    def __init__(self):
        self.state = DecoderState.IDLE
        self.result = DecodedStream()
        self._buffer = b""

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        """Add a chunk and return the events of every record it completed."""
        if self.state in (DecoderState.COMPLETED, DecoderState.FAULTED):
            raise DecodeError(f"Cannot feed a decoder in state {self.state.value}")
        self.state = DecoderState.STREAMING

        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer += chunk

        *lines, self._buffer = self._buffer.split(b"\n")
        events = []
        for raw in lines:
            event = self._process(raw)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> DecodedStream:
        """Flush the trailing partial record and complete the decode."""
        if self._buffer:
            self._process(self._buffer)
            self._buffer = b""
        self.state = DecoderState.COMPLETED
        return self.result

    def fault(self):
        self.state = DecoderState.FAULTED

    def _process(self, raw: bytes) -> Optional[StreamEvent]:
        line = raw.decode("utf-8", errors="replace").strip("\r")
        if not line.strip():
            return None
        try:
            event = parse_record(line)
        except DecodeError as e:
            logger.debug(f"Skipping record: {e}")
            return None
        if event is not None:
            self.result.events.append(event)
        return event


async def decode_stream(chunks: AsyncIterable[Union[bytes, str]]) -> DecodedStream:
    """Decode a whole stream. Transport errors mark the decoder faulted and propagate."""
    decoder = StreamDecoder()
    try:
        async for chunk in chunks:
            decoder.feed(chunk)
    except Exception:
        decoder.fault()
        raise
    return decoder.finish()


async def decode_response(response: httpx.Response) -> DecodedStream:
    """Decode a streaming httpx response body."""
    return await decode_stream(response.aiter_bytes())
