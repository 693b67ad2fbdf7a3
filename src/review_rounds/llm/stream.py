from __future__ import annotations

import codecs
import json
import logging
import re
from typing import Any, AsyncIterable, AsyncIterator

from review_rounds.core.errors import MalformedStreamEventError
from review_rounds.core.types import StreamFormat

logger = logging.getLogger(__name__)

FENCE = "```"

# An opening fence may carry a language tag; a closing fence never does.
_FENCE_MARKER = re.compile(r"```(?:[\w+#.-]+(?=\s|$))?[ \t]*")
_SSE_IGNORED_FIELDS = ("event:", "id:", "retry:")
_SSE_DONE = "[DONE]"


def normalize_code_block(block: str) -> str:
    """Strip fence markers and tags; wrap bare statements in a named function."""
    code = _FENCE_MARKER.sub("", block).strip()
    if "function" not in code and "=>" not in code:
        code = f"function example() {{\n  {code}\n}}"
    return code


def extract_content(payload: Any, stream_format: StreamFormat) -> str:
    """Pull the text delta out of one decoded event for the given format."""
    if not isinstance(payload, dict):
        raise MalformedStreamEventError(
            f"expected a JSON object, got {type(payload).__name__}"
        )
    if "error" in payload:
        raise MalformedStreamEventError(f"backend reported an error: {payload['error']}")

    if stream_format is StreamFormat.CHAT:
        message = payload.get("message") or {}
        if not isinstance(message, dict):
            raise MalformedStreamEventError("'message' is not an object")
        content = message.get("content")
    else:
        content = payload.get("response")

    if content is None:
        return ""
    if not isinstance(content, str):
        raise MalformedStreamEventError(
            f"content is {type(content).__name__}, expected a string"
        )
    return content


class StreamDecoder:
    """Turns a backend byte stream into display fragments.

    Accepts both SSE framing (``data: {...}`` lines) and raw JSON lines. The
    payload shape is fixed by ``stream_format``. Text inside a code fence is
    held back and emitted as a single normalized block once the fence closes.

    One decoder per response. After ``decode`` is exhausted, ``text`` holds
    the concatenation of every emitted fragment.
    """

    def __init__(self, stream_format: StreamFormat) -> None:
        self.stream_format = stream_format
        self.skipped_events = 0
        self._parts: list[str] = []
        self._in_fence = False
        self._fence_buffer: list[str] = []
        self._carry = ""
        self._started = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def in_fence(self) -> bool:
        return self._in_fence

    async def decode(self, chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("StreamDecoder is single use; create one per response")
        self._started = True

        utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        async for chunk in chunks:
            pending += utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
            *lines, pending = pending.split("\n")
            for line in lines:
                for fragment in self._feed_line(line):
                    yield self._emit(fragment)

        # Non-streaming bodies arrive as one unterminated JSON line.
        pending += utf8.decode(b"", final=True)
        for fragment in self._feed_line(pending):
            yield self._emit(fragment)
        for fragment in self._finish():
            yield self._emit(fragment)

    def _emit(self, fragment: str) -> str:
        self._parts.append(fragment)
        return fragment

    def _feed_line(self, line: str) -> list[str]:
        payload = _payload_text(line.rstrip("\r"))
        if payload is None:
            return []
        try:
            content = self._parse_event(payload)
        except MalformedStreamEventError as e:
            self.skipped_events += 1
            logger.warning("Skipping stream event: %s", e)
            return []
        return self._route(content)

    def _parse_event(self, payload: str) -> str:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise MalformedStreamEventError(f"invalid JSON payload {payload[:80]!r}") from e
        return extract_content(data, self.stream_format)

    def _route(self, content: str, final: bool = False) -> list[str]:
        content = self._carry + content
        self._carry = ""
        if not final:
            # A fence may be split across deltas ("``" then "`").
            trailing = len(content) - len(content.rstrip("`"))
            held = trailing % 3
            if held:
                self._carry = content[-held:]
                content = content[:-held]

        fragments: list[str] = []
        for index, piece in enumerate(content.split(FENCE)):
            if index:
                if self._in_fence:
                    self._fence_buffer.append(FENCE)
                    block = self._close_fence()
                    if block:
                        fragments.append(block)
                else:
                    self._in_fence = True
                    self._fence_buffer = [FENCE]
            if not piece:
                continue
            if self._in_fence:
                self._fence_buffer.append(piece)
            else:
                fragments.append(piece)
        return fragments

    def _close_fence(self) -> str | None:
        block = "".join(self._fence_buffer)
        self._fence_buffer = []
        self._in_fence = False
        if not _FENCE_MARKER.sub("", block).strip():
            return None
        return normalize_code_block(block)

    def _finish(self) -> list[str]:
        fragments = self._route("", final=True) if self._carry else []
        if self._in_fence:
            logger.debug("Stream ended inside a code fence; flushing buffered block")
            block = self._close_fence()
            if block:
                fragments.append(block)
        return fragments


def _payload_text(line: str) -> str | None:
    if not line.strip() or line.startswith(":"):
        return None
    if line.startswith("data:"):
        data = line[5:]
        if data.startswith(" "):
            data = data[1:]
        if not data.strip() or data.strip() == _SSE_DONE:
            return None
        return data
    if line.startswith(_SSE_IGNORED_FIELDS):
        return None
    return line
