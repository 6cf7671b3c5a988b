"""Server-sent event framing for chat turns.

Frames go out as `data: <json>\n\n` lines and the stream ends with
`data: [DONE]`. StreamDecoder reads the same format back from arbitrary byte
chunks, keeping any unterminated line in a remainder buffer until the rest of
it arrives. TurnAccumulator folds decoded frames into the assistant text and
the raw tool records of a turn.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from taskpilot.logging import get_logger

log = get_logger("stream")

DONE_MARKER = "[DONE]"
DONE = f"data: {DONE_MARKER}\n\n".encode()


def encode_frame(frame: Mapping[str, Any]) -> bytes:
    """Encode one frame as an SSE data event."""
    payload = json.dumps(frame, ensure_ascii=False, separators=(",", ":"), default=str)
    return f"data: {payload}\n\n".encode()


class StreamDecoder:
    """Incremental SSE `data:` line parser.

    Chunks may split lines, and even UTF-8 sequences, anywhere. Only complete
    lines are parsed; malformed JSON payloads are skipped.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._remainder = ""
        self.done = False

    @property
    def remainder(self) -> str:
        return self._remainder

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        text = self._utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
        buffer = self._remainder + text
        lines = buffer.split("\n")
        self._remainder = lines.pop()
        return [frame for line in lines if (frame := self._parse_line(line)) is not None]

    def flush(self) -> list[dict[str, Any]]:
        """Parse whatever is left once the stream has ended."""
        tail = self._remainder + self._utf8.decode(b"", final=True)
        self._remainder = ""
        frame = self._parse_line(tail)
        return [frame] if frame is not None else []

    def _parse_line(self, line: str) -> dict[str, Any] | None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            # Blank separators, comments and other SSE fields
            return None
        data = line[5:].strip()
        if not data:
            return None
        if data == DONE_MARKER:
            self.done = True
            return None
        try:
            value = json.loads(data)
        except ValueError:
            log.debug("Skipping malformed stream payload: %.200s", data)
            return None
        return value if isinstance(value, dict) else None


def extract_text_delta(frame: Mapping[str, Any]) -> str | None:
    """Pull assistant text out of the delta shapes providers and SDKs emit."""
    frame_type = frame.get("type")
    if frame_type not in (None, "text-delta", "text", "content-delta"):
        return None
    for key in ("delta", "textDelta", "text"):
        value = frame.get(key)
        if isinstance(value, str):
            return value
    choices = frame.get("choices")
    if isinstance(choices, list) and choices:
        delta = choices[0].get("delta") if isinstance(choices[0], dict) else None
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
    return None


@dataclass
class TurnAccumulator:
    """Running view of a turn rebuilt from its decoded frames."""

    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    tool_results: list[dict[str, Any]] = field(default_factory=list)
    finish: dict[str, Any] | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    decoder: StreamDecoder = field(default_factory=StreamDecoder)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        frames = self.decoder.feed(chunk)
        for frame in frames:
            self.add(frame)
        return frames

    def close(self) -> None:
        for frame in self.decoder.flush():
            self.add(frame)

    def add(self, frame: dict[str, Any]) -> None:
        frame_type = frame.get("type")
        if frame_type == "tool-call":
            self.tool_calls.append(frame)
        elif frame_type == "tool-result":
            self.tool_results.append(frame)
        elif frame_type == "finish":
            self.finish = frame
        elif frame_type == "error":
            self.errors.append(frame)
        else:
            delta = extract_text_delta(frame)
            if delta:
                self.text_parts.append(delta)
