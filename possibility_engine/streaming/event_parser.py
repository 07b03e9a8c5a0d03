"""
Event Protocol Parser

Incremental parser for newline-delimited `data: <json>` frames.

STAGE-ST.P: Frame parsing
-------------------------
- Reads may end mid-line: unterminated trailing text is retained and
  prepended to the next chunk. Only terminated lines are parsed.
- `data: [DONE]` yields the sentinel frame.
- Blank lines are ignored.
- Lines without the `data: ` prefix and malformed payloads are skipped and
  logged. They never raise.
"""

import codecs
from collections.abc import Callable

import orjson
from pydantic import ValidationError as PydanticValidationError

from possibility_engine.core.config.constants import SSE_DATA_PREFIX, SSE_DONE_SENTINEL, Stage
from possibility_engine.core.logging.logger import get_logger, log_stage
from possibility_engine.streaming.models import ParsedFrame, StreamEvent

logger = get_logger(__name__)


class StreamEventParser:
    """
    Line-buffered frame parser for one response stream.

    Usage:
        parser = StreamEventParser()
        async for chunk in response.aiter_text():
            for frame in parser.feed(chunk):
                ...
        for frame in parser.flush():
            ...
    """

    def __init__(
        self,
        stream_id: str | None = None,
        on_parse_error: Callable[[str], None] | None = None,
    ):
        self.stream_id = stream_id
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._on_parse_error = on_parse_error
        self.skipped_lines = 0

    @property
    def pending(self) -> str:
        """Unterminated text carried over to the next chunk."""
        return self._buffer

    def feed(self, chunk: str | bytes) -> list[ParsedFrame]:
        if isinstance(chunk, bytes):
            # Multibyte characters may straddle chunk boundaries
            chunk = self._decoder.decode(chunk)

        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")

        frames: list[ParsedFrame] = []
        for line in lines:
            frame = self._parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[ParsedFrame]:
        """Parse a final unterminated line once the stream has ended."""
        remaining, self._buffer = self._buffer + self._decoder.decode(b"", final=True), ""
        frame = self._parse_line(remaining)
        return [frame] if frame is not None else []

    def _parse_line(self, line: str) -> ParsedFrame | None:
        line = line.rstrip("\r")
        if not line.strip():
            return None

        if not line.startswith(SSE_DATA_PREFIX):
            self._skip(line, "missing data prefix")
            return None

        payload = line[len(SSE_DATA_PREFIX):].strip()
        if payload == SSE_DONE_SENTINEL:
            return ParsedFrame(is_done=True)

        try:
            decoded = orjson.loads(payload)
            event = StreamEvent.model_validate(decoded)
        except (orjson.JSONDecodeError, PydanticValidationError) as e:
            first_line = (str(e).splitlines() or [type(e).__name__])[0]
            self._skip(line, "malformed payload", error=first_line)
            return None

        return ParsedFrame(event=event)

    def _skip(self, line: str, reason: str, **extra) -> None:
        self.skipped_lines += 1
        log_stage(
            logger,
            Stage.STREAMING,
            f"Skipping stream line: {reason}",
            level="warning",
            stream_id=self.stream_id,
            line=line[:200],
            **extra,
        )
        if self._on_parse_error is not None:
            self._on_parse_error(reason)
